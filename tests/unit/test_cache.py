"""Unit tests for cache store backends."""
import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from pulse_core.metrics.cache import (
    InMemoryCacheStore,
    RedisCacheStore,
    SQLiteCacheStore,
    is_fresh,
)
from pulse_core.metrics.schema import CacheEntry, DailyMetric


T0 = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _metric(day: int, sent: int = 10) -> DailyMetric:
    return DailyMetric("email", date(2024, 1, day), {"sent": sent})


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    clock = FakeClock()
    if request.param == "memory":
        return InMemoryCacheStore(clock=clock)
    return SQLiteCacheStore(":memory:", clock=clock)


@pytest.mark.asyncio
async def test_put_then_get_range(store):
    await store.put("email:overall", date(2024, 1, 1), _metric(1))
    await store.put("email:overall", date(2024, 1, 3), _metric(3))
    await store.put("email:overall", date(2024, 1, 9), _metric(9))
    await store.put("email:promo", date(2024, 1, 2), _metric(2))

    entries = await store.get("email:overall", date(2024, 1, 1), date(2024, 1, 5))

    assert [e.date for e in entries] == [date(2024, 1, 1), date(2024, 1, 3)]
    assert entries[0].metric == _metric(1)
    assert entries[0].updated_at == T0


@pytest.mark.asyncio
async def test_put_is_last_writer_wins(store):
    await store.put("sales", date(2024, 1, 1), _metric(1, sent=10))
    store.clock.now = T0 + timedelta(minutes=1)
    await store.put("sales", date(2024, 1, 1), _metric(1, sent=99))

    entries = await store.get("sales", date(2024, 1, 1), date(2024, 1, 1))

    assert len(entries) == 1
    assert entries[0].metric.counters == {"sent": 99}
    assert entries[0].updated_at == T0 + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_empty_day_placeholder(store):
    await store.put("ads:act_1", date(2024, 1, 4), None)

    entries = await store.get("ads:act_1", date(2024, 1, 4), date(2024, 1, 4))

    assert len(entries) == 1
    assert entries[0].metric is None


def test_is_fresh_uses_ttl():
    entry = CacheEntry("sales", date(2024, 1, 1), None, updated_at=T0)
    ttl = timedelta(minutes=15)

    assert is_fresh(entry, ttl, T0 + timedelta(minutes=14))
    assert not is_fresh(entry, ttl, T0 + timedelta(minutes=15))


@pytest.mark.asyncio
async def test_sqlite_schema_is_idempotent():
    store = SQLiteCacheStore(":memory:")
    SQLiteCacheStore(store.conn)

    versions = store.conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert versions == 1
    await store.close()


@pytest.mark.asyncio
async def test_redis_store_round_trip():
    redis = AsyncMock()
    store = RedisCacheStore(redis, clock=FakeClock())

    await store.put("email:overall", date(2024, 1, 2), _metric(2))

    key, field, value = redis.hset.await_args.args
    assert key == "pulse:cache:email:overall"
    assert field == "2024-01-02"
    assert json.loads(value)["counters"] == {"sent": 10}

    redis.hgetall.return_value = {
        b"2024-01-02": value.encode(),
        b"2024-01-05": json.dumps(
            {"source": None, "counters": None, "updated_at": T0.isoformat()}
        ).encode(),
        b"2024-02-01": value.encode(),
    }

    entries = await store.get("email:overall", date(2024, 1, 1), date(2024, 1, 31))

    assert [e.date for e in entries] == [date(2024, 1, 2), date(2024, 1, 5)]
    assert entries[0].metric == _metric(2)
    assert entries[1].metric is None

    await store.close()
    redis.aclose.assert_awaited_once()
