"""SQLite storage backend."""

from __future__ import annotations

import sqlite3

import aiosqlite

from llmgate.core import InternalError, Storage

_CREATE_KV = "CREATE TABLE IF NOT EXISTS kv (key BLOB PRIMARY KEY, value BLOB NOT NULL)"
_CREATE_COUNTERS = (
    "CREATE TABLE IF NOT EXISTS counters "
    "(key BLOB PRIMARY KEY, value INTEGER NOT NULL DEFAULT 0)"
)


class SqliteStorage(Storage):
    """Storage in two SQLite tables: plain values and integer counters."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def open(cls, path: str) -> SqliteStorage:
        """Open (creating if needed) the database at path."""
        try:
            db = await aiosqlite.connect(path)
        except sqlite3.Error as exc:
            raise InternalError(f"sqlite open: {exc}") from exc
        try:
            await db.execute(_CREATE_KV)
            await db.execute(_CREATE_COUNTERS)
            await db.commit()
        except sqlite3.Error as exc:
            await db.close()
            raise InternalError(f"sqlite init: {exc}") from exc
        return cls(db)

    async def close(self) -> None:
        await self._db.close()

    async def __aenter__(self) -> SqliteStorage:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _fetch_all(self, sql: str, params: tuple) -> list:
        async with self._db.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def get(self, key: bytes) -> bytes | None:
        try:
            rows = await self._fetch_all("SELECT value FROM kv WHERE key = ?", (bytes(key),))
        except sqlite3.Error as exc:
            raise InternalError(str(exc)) from exc
        return bytes(rows[0][0]) if rows else None

    async def set(self, key: bytes, value: bytes) -> None:
        try:
            await self._db.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (bytes(key), bytes(value)),
            )
            await self._db.commit()
        except sqlite3.Error as exc:
            raise InternalError(str(exc)) from exc

    async def increment(self, key: bytes, delta: int) -> int:
        try:
            rows = await self._fetch_all(
                "INSERT INTO counters (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = value + excluded.value "
                "RETURNING value",
                (bytes(key), delta),
            )
            await self._db.commit()
        except sqlite3.Error as exc:
            raise InternalError(str(exc)) from exc
        return int(rows[0][0])

    async def list(self, prefix: bytes) -> list[tuple[bytes, bytes]]:
        lower = bytes(prefix)
        upper = bytearray(lower)
        if upper:
            upper[-1] = (upper[-1] + 1) % 256
        bounds = (lower, bytes(upper))
        try:
            kv_rows = await self._fetch_all(
                "SELECT key, value FROM kv WHERE key >= ? AND key < ?", bounds
            )
            counter_rows = await self._fetch_all(
                "SELECT key, value FROM counters WHERE key >= ? AND key < ?", bounds
            )
        except sqlite3.Error as exc:
            raise InternalError(str(exc)) from exc

        pairs = [(bytes(k), bytes(v)) for k, v in kv_rows]
        seen = {k for k, _ in pairs}
        pairs.extend(
            (bytes(k), int(v).to_bytes(8, "little", signed=True))
            for k, v in counter_rows
            if bytes(k) not in seen
        )
        return pairs

    async def delete(self, key: bytes) -> None:
        try:
            await self._db.execute("DELETE FROM kv WHERE key = ?", (bytes(key),))
            await self._db.execute("DELETE FROM counters WHERE key = ?", (bytes(key),))
            await self._db.commit()
        except sqlite3.Error as exc:
            raise InternalError(str(exc)) from exc