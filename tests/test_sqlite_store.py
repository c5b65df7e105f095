import pytest

from llmgate.core import InternalError
from llmgate.storage.sqlite_store import SqliteStorage


def _db(tmp_path):
    return str(tmp_path / "gateway.db")


@pytest.mark.asyncio
async def test_set_get_and_missing(tmp_path):
    async with await SqliteStorage.open(_db(tmp_path)) as store:
        assert await store.get(b"keysa") is None
        await store.set(b"keysa", b"one")
        await store.set(b"keysa", b"two")
        assert await store.get(b"keysa") == b"two"


@pytest.mark.asyncio
async def test_increment_returns_running_total(tmp_path):
    async with await SqliteStorage.open(_db(tmp_path)) as store:
        assert await store.increment(b"rlimk", 2) == 2
        assert await store.increment(b"rlimk", 5) == 7
        assert await store.increment(b"rlimk", 0) == 7


@pytest.mark.asyncio
async def test_list_by_prefix_includes_counters(tmp_path):
    async with await SqliteStorage.open(_db(tmp_path)) as store:
        await store.set(b"keysa", b"value")
        await store.set(b"keyt", b"outside")
        await store.set(b"cachx", b"other")
        await store.increment(b"keysc", 4)
        pairs = dict(await store.list(b"keys"))
        assert pairs == {
            b"keysa": b"value",
            b"keysc": (4).to_bytes(8, "little", signed=True),
        }


@pytest.mark.asyncio
async def test_list_prefers_value_over_counter_with_same_key(tmp_path):
    async with await SqliteStorage.open(_db(tmp_path)) as store:
        await store.set(b"keysa", b"value")
        await store.increment(b"keysa", 3)
        assert await store.list(b"keys") == [(b"keysa", b"value")]


@pytest.mark.asyncio
async def test_delete_removes_both_tables(tmp_path):
    async with await SqliteStorage.open(_db(tmp_path)) as store:
        await store.set(b"keysa", b"value")
        await store.increment(b"keysa", 3)
        await store.delete(b"keysa")
        assert await store.get(b"keysa") is None
        assert await store.list(b"keys") == []
        assert await store.increment(b"keysa", 1) == 1


@pytest.mark.asyncio
async def test_data_persists_across_reopen(tmp_path):
    path = _db(tmp_path)
    async with await SqliteStorage.open(path) as store:
        await store.set(b"keysa", b"value")
        await store.increment(b"usgek", 6)
    async with await SqliteStorage.open(path) as store:
        assert await store.get(b"keysa") == b"value"
        assert await store.increment(b"usgek", 0) == 6


@pytest.mark.asyncio
async def test_open_in_missing_directory_fails(tmp_path):
    with pytest.raises(InternalError, match="sqlite"):
        await SqliteStorage.open(str(tmp_path / "missing" / "gateway.db"))