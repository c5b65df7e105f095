"""Redis storage backend."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from llmgate.core import InternalError, Storage


class RedisStorage(Storage):
    """Storage on a Redis server; counters use INCRBY and share the key space."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    async def open(cls, url: str) -> RedisStorage:
        """Connect to the server at url and check that it answers."""
        try:
            client = aioredis.Redis.from_url(url)
        except (ValueError, RedisError) as exc:
            raise InternalError(f"redis open: {exc}") from exc
        try:
            await client.ping()
        except RedisError as exc:
            await client.aclose()
            raise InternalError(f"redis connect: {exc}") from exc
        return cls(client)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RedisStorage:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def get(self, key: bytes) -> bytes | None:
        try:
            return await self._client.get(bytes(key))
        except RedisError as exc:
            raise InternalError(str(exc)) from exc

    async def set(self, key: bytes, value: bytes) -> None:
        try:
            await self._client.set(bytes(key), bytes(value))
        except RedisError as exc:
            raise InternalError(str(exc)) from exc

    async def increment(self, key: bytes, delta: int) -> int:
        try:
            return int(await self._client.incr(bytes(key), delta))
        except RedisError as exc:
            raise InternalError(str(exc)) from exc

    async def list(self, prefix: bytes) -> list[tuple[bytes, bytes]]:
        pattern = bytes(prefix) + b"*"
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if not keys:
                return []
            values = await self._client.mget(keys)
        except RedisError as exc:
            raise InternalError(str(exc)) from exc
        return [(key, value) for key, value in zip(keys, values) if value is not None]

    async def delete(self, key: bytes) -> None:
        try:
            await self._client.delete(bytes(key))
        except RedisError as exc:
            raise InternalError(str(exc)) from exc