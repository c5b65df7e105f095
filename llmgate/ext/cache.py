"""Response cache for non-streaming chat completions."""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Mapping
from typing import Any

from aiohttp import web

from llmgate.core import Extension, GatewayError, RequestContext, Storage, storage_key

PREFIX = b"cach"
DEFAULT_TTL_SECONDS = 300


class Cache(Extension):
    """Stores responses keyed by a hash of the request, valid for ttl_seconds."""

    name = "cache"
    prefix = PREFIX

    def __init__(
        self,
        config: Mapping[str, Any] | None,
        storage: Storage,
        clock: Callable[[], float] = time.time,
    ) -> None:
        ttl = (config or {}).get("ttl_seconds")
        if isinstance(ttl, bool) or not isinstance(ttl, int):
            ttl = DEFAULT_TTL_SECONDS
        self.ttl_seconds = ttl % (1 << 64)
        self._storage = storage
        self._clock = clock

    @staticmethod
    def cache_key(request: Mapping[str, Any]) -> bytes:
        """Storage key for a request: the prefix and the SHA-256 of its JSON form."""
        encoded = json.dumps(request, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return storage_key(PREFIX, hashlib.sha256(encoded).digest())

    def _now(self) -> int:
        return int(self._clock())

    async def clear(self) -> None:
        """Remove every cached response."""
        try:
            pairs = await self._storage.list(PREFIX)
        except GatewayError:
            return
        for key, _ in pairs:
            try:
                await self._storage.delete(key)
            except GatewayError:
                pass

    def admin_routes(self) -> list[web.RouteDef]:
        """Routes serving DELETE /v1/cache."""

        async def clear_handler(request: web.Request) -> web.Response:
            await self.clear()
            return web.Response(status=204)

        return [web.delete("/v1/cache", clear_handler)]

    async def on_cache_lookup(self, request: dict[str, Any]) -> dict[str, Any] | None:
        key = self.cache_key(request)
        try:
            data = await self._storage.get(key)
        except GatewayError:
            return None
        if data is None or len(data) < 8:
            return None
        stored_at = int.from_bytes(data[:8], "big")
        if max(self._now() - stored_at, 0) > self.ttl_seconds:
            try:
                await self._storage.delete(key)
            except GatewayError:
                pass
            return None
        try:
            return json.loads(data[8:])
        except (ValueError, UnicodeDecodeError):
            return None

    async def on_response(
        self, ctx: RequestContext, request: dict[str, Any], response: dict[str, Any]
    ) -> None:
        if ctx.is_stream:
            return
        try:
            body = json.dumps(response).encode("utf-8")
        except (TypeError, ValueError):
            return
        value = self._now().to_bytes(8, "big") + body
        try:
            await self._storage.set(self.cache_key(request), value)
        except GatewayError:
            pass