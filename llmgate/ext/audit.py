"""Audit log extension: one stored record per finished or failed request."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from llmgate.core import (
    ApiError,
    Extension,
    GatewayError,
    GatewayTimeout,
    ProviderError,
    RequestContext,
    Storage,
    storage_key,
)

PREFIX = b"alog"
DEFAULT_LIMIT = 100

Pricing = Callable[[int, int], float]
"""Cost in USD of a request with the given prompt and completion token counts."""

log = logging.getLogger(__name__)


def _require(data: Mapping[str, Any], name: str, kind: type) -> Any:
    value = data.get(name)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"audit record: field '{name}' missing or invalid")
    return value


def _optional_int(data: Mapping[str, Any], name: str) -> int | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"audit record: field '{name}' invalid")
    return value


@dataclass(frozen=True)
class AuditRecord:
    """One logged request."""

    request_id: str
    timestamp: int
    key_name: str
    model: str
    provider: str
    prompt_tokens: int | None
    completion_tokens: int | None
    cost_micros: int
    latency_ms: int
    status: int

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "key_name": self.key_name,
            "model": self.model,
            "provider": self.provider,
        }
        if self.prompt_tokens is not None:
            data["prompt_tokens"] = self.prompt_tokens
        if self.completion_tokens is not None:
            data["completion_tokens"] = self.completion_tokens
        data["cost_micros"] = self.cost_micros
        data["latency_ms"] = self.latency_ms
        data["status"] = self.status
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditRecord:
        if not isinstance(data, Mapping):
            raise ValueError("audit record: expected an object")
        return cls(
            request_id=_require(data, "request_id", str),
            timestamp=_require(data, "timestamp", int),
            key_name=_require(data, "key_name", str),
            model=_require(data, "model", str),
            provider=_require(data, "provider", str),
            prompt_tokens=_optional_int(data, "prompt_tokens"),
            completion_tokens=_optional_int(data, "completion_tokens"),
            cost_micros=_require(data, "cost_micros", int),
            latency_ms=_require(data, "latency_ms", int),
            status=_require(data, "status", int),
        )


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _error_status(error: GatewayError) -> int:
    if isinstance(error, ProviderError):
        return error.status
    if isinstance(error, GatewayTimeout):
        return 504
    return 500


def _decode(value: bytes) -> AuditRecord | None:
    try:
        return AuditRecord.from_dict(json.loads(value))
    except (ValueError, UnicodeDecodeError):
        return None


async def query_records(
    storage: Storage,
    key: str | None = None,
    model: str | None = None,
    since: int | None = None,
    until: int | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[AuditRecord]:
    """Load stored records matching the filters, newest first, at most limit of them."""
    pairs = await storage.list(PREFIX)
    records = [
        record
        for record in (_decode(value) for _, value in pairs)
        if record is not None
        and (key is None or record.key_name == key)
        and (model is None or record.model == model)
        and (since is None or record.timestamp >= since)
        and (until is None or record.timestamp <= until)
    ]
    records.sort(key=lambda r: r.timestamp, reverse=True)
    return records[:limit]


def _bad_request(message: str) -> web.Response:
    return web.json_response(
        ApiError(message, "invalid_request_error").to_dict(), status=400
    )


class AuditLogger(Extension):
    """Writes an audit record for every response, usage chunk and error."""

    name = "audit"
    prefix = PREFIX

    def __init__(
        self,
        config: Mapping[str, Any] | None,
        storage: Storage,
        pricing: Mapping[str, Pricing] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._pricing = dict(pricing or {})
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    def admin_routes(self) -> list[web.RouteDef]:
        """Routes serving GET /v1/admin/logs."""

        async def logs_handler(request: web.Request) -> web.Response:
            params = request.query
            filters: dict[str, Any] = {
                "key": params.get("key"),
                "model": params.get("model"),
            }
            for name in ("since", "until", "limit"):
                raw = params.get(name)
                if raw is None:
                    continue
                try:
                    filters[name] = int(raw)
                except ValueError:
                    return _bad_request(f"invalid query parameter '{name}'")
            if filters.get("limit", 0) < 0:
                return _bad_request("invalid query parameter 'limit'")
            try:
                records = await query_records(self._storage, **filters)
            except GatewayError as exc:
                return web.json_response(
                    ApiError(str(exc), "server_error").to_dict(), status=500
                )
            return web.json_response([r.to_dict() for r in records])

        return [web.get("/v1/admin/logs", logs_handler)]

    def cost_micros(self, model: str, prompt: int, completion: int) -> int:
        """Request cost in millionths of a USD, or 0 for a model without pricing."""
        price = self._pricing.get(model)
        if price is None:
            return 0
        return _round_half_away(price(prompt, completion) * 1_000_000.0)

    def _now_millis(self) -> int:
        return int(self._clock() * 1000)

    def _write_record(self, record: AuditRecord) -> None:
        suffix = record.timestamp.to_bytes(8, "big", signed=True) + record.request_id.encode()
        key = storage_key(PREFIX, suffix)
        value = json.dumps(record.to_dict()).encode("utf-8")

        async def write() -> None:
            try:
                await self._storage.set(key, value)
            except GatewayError as exc:
                log.warning("audit: failed to write record: %s", exc)

        # Fire and forget so that logging never delays the response.
        task = asyncio.get_running_loop().create_task(write())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait until every record written so far has reached storage."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _record(
        self,
        ctx: RequestContext,
        prompt: int | None,
        completion: int | None,
        cost_micros: int,
        status: int,
    ) -> AuditRecord:
        return AuditRecord(
            request_id=ctx.request_id,
            timestamp=self._now_millis(),
            key_name=ctx.key_name or "",
            model=ctx.model,
            provider=ctx.provider,
            prompt_tokens=prompt,
            completion_tokens=completion,
            cost_micros=cost_micros,
            latency_ms=int(ctx.elapsed() * 1000),
            status=status,
        )

    async def on_response(
        self, ctx: RequestContext, request: dict[str, Any], response: dict[str, Any]
    ) -> None:
        usage = response.get("usage")
        prompt = completion = None
        cost = 0
        if usage:
            prompt = int(usage.get("prompt_tokens", 0))
            completion = int(usage.get("completion_tokens", 0))
            cost = self.cost_micros(ctx.model, prompt, completion)
        self._write_record(self._record(ctx, prompt, completion, cost, 200))

    async def on_chunk(self, ctx: RequestContext, chunk: dict[str, Any]) -> None:
        # Only the final chunk of a stream carries usage; chunks without it are skipped.
        usage = chunk.get("usage")
        if not usage:
            return
        prompt = int(usage.get("prompt_tokens", 0))
        completion = int(usage.get("completion_tokens", 0))
        cost = self.cost_micros(ctx.model, prompt, completion)
        self._write_record(self._record(ctx, prompt, completion, cost, 200))

    async def on_error(self, ctx: RequestContext, error: GatewayError) -> None:
        self._write_record(self._record(ctx, None, None, 0, _error_status(error)))