"""Per-key spending limits, in millionths of a USD."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from aiohttp import web

from llmgate.core import (
    PREFIX_LEN,
    Extension,
    ExtensionError,
    GatewayError,
    RequestContext,
    Storage,
    storage_key,
)

PREFIX = b"bdgt"
GLOBAL_KEY = "__global"

Pricing = Callable[[int, int], float]
"""Cost in USD of a request with the given prompt and completion token counts."""


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class Budget(Extension):
    """Rejects requests once a key has spent its budget."""

    name = "budget"
    prefix = PREFIX

    def __init__(
        self,
        config: Mapping[str, Any],
        storage: Storage,
        pricing: Mapping[str, Pricing] | None = None,
    ) -> None:
        default_budget = _as_float(config.get("default_budget"))
        if default_budget is None:
            raise ValueError("budget: missing or invalid 'default_budget' (USD float)")
        if default_budget <= 0.0:
            raise ValueError("budget: 'default_budget' must be positive")

        key_budgets: dict[str, int] = {}
        keys_table = config.get("keys")
        if isinstance(keys_table, Mapping):
            for key_name, key_config in keys_table.items():
                budget = (
                    _as_float(key_config.get("budget"))
                    if isinstance(key_config, Mapping)
                    else None
                )
                if budget is None:
                    raise ValueError(f"budget: key '{key_name}' missing or invalid 'budget'")
                key_budgets[key_name] = int(budget * 1_000_000.0)

        self._storage = storage
        self._pricing = dict(pricing or {})
        self.default_budget_micros = int(default_budget * 1_000_000.0)
        self.key_budgets = key_budgets

    def budget_for_key(self, key_name: str) -> int:
        return self.key_budgets.get(key_name, self.default_budget_micros)

    def cost_micros(self, model: str, prompt_tokens: int, completion_tokens: int) -> int:
        price = self._pricing.get(model)
        if price is None:
            return 0
        return int(price(prompt_tokens, completion_tokens) * 1_000_000.0)

    async def entries(self) -> list[dict[str, Any]]:
        """Spending and remaining budget of every key that has spent anything."""
        try:
            pairs = await self._storage.list(PREFIX)
        except GatewayError:
            pairs = []
        result = []
        for raw_key, raw_value in pairs:
            try:
                suffix = raw_key[PREFIX_LEN:].decode("utf-8")
            except UnicodeDecodeError:
                continue
            spent_micros = (
                int.from_bytes(raw_value[:8], "little", signed=True) if len(raw_value) >= 8 else 0
            )
            spent_usd = spent_micros / 1_000_000.0
            budget_usd = self.budget_for_key(suffix) / 1_000_000.0
            result.append(
                {
                    "key": suffix,
                    "spent_usd": spent_usd,
                    "budget_usd": budget_usd,
                    "remaining_usd": max(budget_usd - spent_usd, 0.0),
                }
            )
        return result

    def admin_routes(self) -> list[web.RouteDef]:
        """Routes serving GET /v1/budget."""

        async def budget_handler(request: web.Request) -> web.Response:
            return web.json_response(await self.entries())

        return [web.get("/v1/budget", budget_handler)]

    async def _record_cost(self, key_name: str, model: str, prompt: int, completion: int) -> None:
        micros = self.cost_micros(model, prompt, completion)
        if micros > 0:
            try:
                await self._storage.increment(storage_key(PREFIX, key_name), micros)
            except GatewayError:
                pass

    async def on_request(self, ctx: RequestContext) -> None:
        key_name = ctx.key_name or GLOBAL_KEY
        budget = self.budget_for_key(key_name)
        try:
            spent = await self._storage.increment(storage_key(PREFIX, key_name), 0)
        except GatewayError:
            spent = 0
        if spent >= budget:
            raise ExtensionError(429, "budget exceeded", "budget_exceeded")

    async def _record_usage(self, ctx: RequestContext, usage: Mapping[str, Any] | None) -> None:
        if usage:
            await self._record_cost(
                ctx.key_name or GLOBAL_KEY,
                ctx.model,
                int(usage.get("prompt_tokens", 0)),
                int(usage.get("completion_tokens", 0)),
            )

    async def on_response(
        self, ctx: RequestContext, request: dict[str, Any], response: dict[str, Any]
    ) -> None:
        await self._record_usage(ctx, response.get("usage"))

    async def on_chunk(self, ctx: RequestContext, chunk: dict[str, Any]) -> None:
        await self._record_usage(ctx, chunk.get("usage"))