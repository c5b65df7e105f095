import pytest
from aiohttp.test_utils import TestClient, TestServer
from aiohttp import web

from llmgate.core import (
    GatewayTimeout,
    InternalError,
    ProviderError,
    RequestContext,
)
from llmgate.ext.audit import AuditLogger, AuditRecord, query_records
from llmgate.storage.memory import MemoryStorage


def make_ctx(request_id="req-1", key_name="alice", model="gpt"):
    return RequestContext(request_id=request_id, model=model, provider="openai", key_name=key_name)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def sample_record(**overrides):
    fields = dict(
        request_id="r",
        timestamp=5,
        key_name="k",
        model="m",
        provider="p",
        prompt_tokens=None,
        completion_tokens=None,
        cost_micros=0,
        latency_ms=1,
        status=500,
    )
    fields.update(overrides)
    return AuditRecord(**fields)


def test_record_to_dict_skips_missing_tokens():
    data = sample_record().to_dict()
    assert "prompt_tokens" not in data
    assert "completion_tokens" not in data
    assert AuditRecord.from_dict(data) == sample_record()


def test_record_round_trip_with_tokens():
    record = sample_record(prompt_tokens=3, completion_tokens=4, status=200)
    assert AuditRecord.from_dict(record.to_dict()) == record


def test_record_from_dict_rejects_bad_fields():
    data = sample_record().to_dict()
    data["status"] = "bad"
    with pytest.raises(ValueError):
        AuditRecord.from_dict(data)


def test_cost_micros_uses_pricing():
    logger = AuditLogger({}, MemoryStorage(), {"gpt": lambda p, c: (p + c) / 1_000_000})
    assert logger.cost_micros("gpt", 10, 5) == 15
    assert logger.cost_micros("unknown", 10, 5) == 0


@pytest.mark.asyncio
async def test_on_response_writes_record():
    storage = MemoryStorage()
    logger = AuditLogger({}, storage, {"gpt": lambda p, c: (p + c) / 1_000_000}, clock=Clock())
    response = {"usage": {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9}}
    await logger.on_response(make_ctx(), {}, response)
    await logger.flush()
    records = await query_records(storage)
    assert len(records) == 1
    record = records[0]
    assert record.request_id == "req-1"
    assert record.key_name == "alice"
    assert record.prompt_tokens == 7
    assert record.completion_tokens == 2
    assert record.cost_micros == 9
    assert record.status == 200
    assert record.timestamp == 1_000_000


@pytest.mark.asyncio
async def test_on_error_records_status():
    storage = MemoryStorage()
    logger = AuditLogger({}, storage, {})
    await logger.on_error(make_ctx("a"), ProviderError(503, "down"))
    await logger.on_error(make_ctx("b"), GatewayTimeout())
    await logger.on_error(make_ctx("c"), InternalError("boom"))
    await logger.flush()
    statuses = {r.request_id: r.status for r in await query_records(storage)}
    assert statuses == {"a": 503, "b": 504, "c": 500}


@pytest.mark.asyncio
async def test_on_chunk_without_usage_writes_nothing():
    storage = MemoryStorage()
    logger = AuditLogger({}, storage, {})
    await logger.on_chunk(make_ctx(), {"choices": []})
    await logger.flush()
    assert await query_records(storage) == []


@pytest.mark.asyncio
async def test_missing_key_name_stored_as_empty():
    storage = MemoryStorage()
    logger = AuditLogger({}, storage, {})
    await logger.on_chunk(make_ctx(key_name=None), {"usage": {"prompt_tokens": 1, "completion_tokens": 1}})
    await logger.flush()
    records = await query_records(storage)
    assert [r.key_name for r in records] == [""]


@pytest.mark.asyncio
async def test_query_filters_and_orders_newest_first():
    storage = MemoryStorage()
    clock = Clock(1.0)
    logger = AuditLogger({}, storage, {}, clock=clock)
    for i, (key, model) in enumerate([("a", "m1"), ("b", "m1"), ("a", "m2"), ("a", "m1")]):
        clock.now = float(i + 1)
        await logger.on_error(make_ctx(f"r{i}", key, model), InternalError("x"))
    await logger.flush()

    all_records = await query_records(storage)
    stamps = [r.timestamp for r in all_records]
    assert stamps == sorted(stamps, reverse=True)

    by_key = await query_records(storage, key="a", model="m1")
    assert [r.request_id for r in by_key] == ["r3", "r0"]

    ranged = await query_records(storage, since=2000, until=3000)
    assert {r.request_id for r in ranged} == {"r1", "r2"}

    limited = await query_records(storage, limit=2)
    assert [r.request_id for r in limited] == ["r3", "r2"]


@pytest.mark.asyncio
async def test_query_skips_corrupt_values():
    storage = MemoryStorage()
    await storage.set(b"alogjunk", b"not json")
    assert await query_records(storage) == []


@pytest.mark.asyncio
async def test_admin_route_returns_records():
    storage = MemoryStorage()
    logger = AuditLogger({}, storage, {})
    await logger.on_error(make_ctx("x", "alice"), ProviderError(429, "slow"))
    await logger.on_error(make_ctx("y", "bob"), ProviderError(429, "slow"))
    await logger.flush()
    app = web.Application()
    app.add_routes(logger.admin_routes())
    async with TestClient(TestServer(app)) as client:
        resp = await client.get("/v1/admin/logs", params={"key": "bob"})
        assert resp.status == 200
        body = await resp.json()
        assert [r["request_id"] for r in body] == ["y"]
        bad = await client.get("/v1/admin/logs", params={"limit": "many"})
        assert bad.status == 400