"""In-process storage backend."""

from __future__ import annotations

from llmgate.core import Storage


class MemoryStorage(Storage):
    """Storage kept in dictionaries; counters are listed as 8-byte little-endian values."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}
        self._counters: dict[bytes, int] = {}

    async def get(self, key: bytes) -> bytes | None:
        return self._data.get(bytes(key))

    async def set(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    async def increment(self, key: bytes, delta: int) -> int:
        key = bytes(key)
        value = self._counters.get(key, 0) + delta
        self._counters[key] = value
        return value

    async def list(self, prefix: bytes) -> list[tuple[bytes, bytes]]:
        prefix = bytes(prefix)
        pairs = [(k, v) for k, v in self._data.items() if k.startswith(prefix)]
        pairs.extend(
            (k, v.to_bytes(8, "little", signed=True))
            for k, v in self._counters.items()
            if k.startswith(prefix)
        )
        return pairs

    async def delete(self, key: bytes) -> None:
        key = bytes(key)
        self._data.pop(key, None)
        self._counters.pop(key, None)