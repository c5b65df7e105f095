"""Token usage counters per key and model."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from aiohttp import web

from llmgate.core import (
    PREFIX_LEN,
    Extension,
    GatewayError,
    RequestContext,
    Storage,
    storage_key,
)

PREFIX = b"usge"
GLOBAL_KEY = "__global"


class UsageTracker(Extension):
    """Counts prompt and completion tokens for every (key, model) pair."""

    name = "usage"
    prefix = PREFIX

    def __init__(self, config: Mapping[str, Any] | None, storage: Storage) -> None:
        self._storage = storage

    async def record(
        self, key_name: str, model: str, prompt_tokens: int, completion_tokens: int
    ) -> None:
        """Add token counts to the counters of key_name and model."""
        for kind, amount in (("p", prompt_tokens), ("c", completion_tokens)):
            try:
                await self._storage.increment(
                    storage_key(PREFIX, f"{key_name}:{model}:{kind}"), amount
                )
            except GatewayError:
                pass

    async def entries(self) -> list[dict[str, Any]]:
        """Totals per (key, model), read back from storage."""
        try:
            pairs = await self._storage.list(PREFIX)
        except GatewayError:
            pairs = []

        totals: dict[tuple[str, str], list[int]] = {}
        for raw_key, raw_value in pairs:
            try:
                suffix = raw_key[PREFIX_LEN:].decode("utf-8")
            except UnicodeDecodeError:
                continue
            rest, sep, kind = suffix.rpartition(":")
            if not sep:
                continue
            key_name, sep, model = rest.partition(":")
            if not sep:
                continue
            value = (
                int.from_bytes(raw_value[:8], "little", signed=True) if len(raw_value) >= 8 else 0
            )
            counts = totals.setdefault((key_name, model), [0, 0])
            if kind == "p":
                counts[0] = value
            elif kind == "c":
                counts[1] = value

        return [
            {
                "key": key_name,
                "model": model,
                "prompt_tokens": prompt,
                "completion_tokens": completion,
            }
            for (key_name, model), (prompt, completion) in totals.items()
        ]

    def admin_routes(self) -> list[web.RouteDef]:
        """Routes serving GET /v1/usage."""

        async def usage_handler(request: web.Request) -> web.Response:
            return web.json_response(await self.entries())

        return [web.get("/v1/usage", usage_handler)]

    async def _record_usage(self, ctx: RequestContext, usage: Mapping[str, Any] | None) -> None:
        if usage:
            await self.record(
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