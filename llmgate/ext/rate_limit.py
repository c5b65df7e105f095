"""Per-key request and token limits over one-minute windows."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

from llmgate.core import (
    Extension,
    ExtensionError,
    GatewayError,
    RequestContext,
    Storage,
)

PREFIX = b"rlim"
GLOBAL_KEY = "__global"


def current_minute() -> int:
    """Whole minutes since the Unix epoch."""
    return int(time.time()) // 60


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class RateLimit(Extension):
    """Rejects requests beyond requests_per_minute or tokens_per_minute per key."""

    name = "rate_limit"
    prefix = PREFIX

    def __init__(
        self,
        config: Mapping[str, Any],
        storage: Storage,
        clock: Callable[[], float] | None = None,
    ) -> None:
        rpm = _as_int(config.get("requests_per_minute"))
        if rpm is None:
            raise ValueError("rate_limit: missing or invalid 'requests_per_minute'")
        if rpm <= 0:
            raise ValueError("rate_limit: 'requests_per_minute' must be positive")

        tpm = _as_int(config.get("tokens_per_minute"))
        if tpm is not None and tpm <= 0:
            raise ValueError("rate_limit: 'tokens_per_minute' must be positive")

        self._storage = storage
        self._clock = clock
        self.requests_per_minute = rpm
        self.tokens_per_minute = tpm

    def _minute(self) -> int:
        if self._clock is None:
            return current_minute()
        return int(self._clock()) // 60

    def _tpm_key(self, key_name: str, minute: int) -> bytes:
        return self.storage_key(f"{key_name}:tpm:{minute}")

    async def on_request(self, ctx: RequestContext) -> None:
        key_name = ctx.key_name or GLOBAL_KEY
        minute = self._minute()

        try:
            count = await self._storage.increment(self.storage_key(f"{key_name}:{minute}"), 1)
        except GatewayError as exc:
            raise ExtensionError(500, str(exc), "server_error") from exc
        if count > self.requests_per_minute:
            raise ExtensionError(429, "rate limit exceeded (RPM)", "rate_limit_error")

        if self.tokens_per_minute is not None:
            try:
                tokens = await self._storage.increment(self._tpm_key(key_name, minute), 0)
            except GatewayError as exc:
                raise ExtensionError(500, str(exc), "server_error") from exc
            if tokens > self.tokens_per_minute:
                raise ExtensionError(429, "rate limit exceeded (TPM)", "rate_limit_error")

    async def _count_tokens(self, ctx: RequestContext, usage: Mapping[str, Any] | None) -> None:
        if self.tokens_per_minute is None:
            return
        total = int((usage or {}).get("total_tokens", 0))
        if total == 0:
            return
        key = self._tpm_key(ctx.key_name or GLOBAL_KEY, self._minute())
        try:
            await self._storage.increment(key, total)
        except GatewayError:
            pass

    async def on_response(
        self, ctx: RequestContext, request: dict[str, Any], response: dict[str, Any]
    ) -> None:
        await self._count_tokens(ctx, response.get("usage"))

    async def on_chunk(self, ctx: RequestContext, chunk: dict[str, Any]) -> None:
        await self._count_tokens(ctx, chunk.get("usage"))