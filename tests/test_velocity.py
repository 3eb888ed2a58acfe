import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bookingguard.common.errors import VelocityCounterUnavailable
from bookingguard.services.risk_engine.velocity import (
    InMemoryVelocityCounter,
    RedisVelocityCounter,
    create_velocity_counter,
    subject_key,
)

from .conftest import NOW

KEY = subject_key("ip", "203.0.113.7")


def test_subject_key_normalises_email_and_ip():
    assert subject_key("email", "  Client@Example.COM ") == "velocity:email:client@example.com"
    assert subject_key("ip", "2001:0db8:0000:0000:0000:0000:0000:0001") == "velocity:ip:2001:db8::1"
    assert subject_key("user", "user_1") == "velocity:user:user_1"


async def test_count_includes_only_increments_inside_window():
    counter = InMemoryVelocityCounter()
    await counter.increment(KEY, NOW - timedelta(hours=2))
    await counter.increment(KEY, NOW - timedelta(hours=1))  # exactly on the lower bound, excluded
    await counter.increment(KEY, NOW - timedelta(minutes=30))
    await counter.increment(KEY, NOW)

    assert await counter.count(KEY, 1, NOW) == 2
    assert await counter.count(KEY, 3, NOW) == 4
    assert await counter.count("velocity:ip:198.51.100.1", 1, NOW) == 0


async def test_increments_after_as_of_are_not_counted():
    counter = InMemoryVelocityCounter()
    await counter.increment(KEY, NOW + timedelta(minutes=5))
    assert await counter.count(KEY, 1, NOW) == 0


async def test_concurrent_increments_are_never_lost():
    counter = InMemoryVelocityCounter()
    await asyncio.gather(*(counter.increment(KEY, NOW - timedelta(seconds=i)) for i in range(200)))
    assert await counter.count(KEY, 1, NOW) == 200


def test_increments_from_threads_are_never_lost():
    counter = InMemoryVelocityCounter(stripes=1)

    def bump(i):
        asyncio.run(counter.increment(KEY, NOW - timedelta(milliseconds=i)))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(bump, range(400)))

    assert asyncio.run(counter.count(KEY, 1, NOW)) == 400


async def test_compact_drops_events_older_than_retention():
    counter = InMemoryVelocityCounter(retention_hours=2)
    await counter.increment(KEY, NOW - timedelta(hours=1))
    await counter.increment(KEY, NOW - timedelta(minutes=10))
    other = subject_key("email", "x@tempmail.com")
    await counter.increment(other, NOW - timedelta(minutes=10))

    removed = await counter.compact(NOW + timedelta(hours=1, minutes=30))

    assert removed == 1
    assert await counter.count(KEY, 24, NOW) == 1
    assert await counter.compact(NOW + timedelta(hours=2)) == 2
    assert await counter.count(other, 24, NOW) == 0


async def test_idle_keys_are_dropped_as_increments_accumulate():
    counter = InMemoryVelocityCounter(retention_hours=24, compact_every=10)
    for i in range(1000):
        await counter.increment(subject_key("ip", f"10.0.{i // 256}.{i % 256}"), NOW)

    later = NOW + timedelta(days=30)
    for i in range(10):
        await counter.increment(subject_key("email", f"user{i}@example.com"), later)

    assert len(counter._events) == 10
    assert await counter.count(subject_key("email", "user0@example.com"), 1, later) == 1


def test_ensure_retention_only_grows():
    counter = InMemoryVelocityCounter(retention_hours=24)
    counter.ensure_retention(12)
    assert counter.retention_hours == 24
    counter.ensure_retention(72)
    assert counter.retention_hours == 72


def test_create_velocity_counter_rejects_unknown_backend():
    assert isinstance(create_velocity_counter("memory"), InMemoryVelocityCounter)
    with pytest.raises(ValueError):
        create_velocity_counter("memcached")


# ----------------------
# Redis backend
# ----------------------
def _redis_mock():
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 0, True])
    client.pipeline.return_value.__aenter__.return_value = pipe
    return client, pipe


async def test_redis_increment_adds_member_and_trims_in_one_transaction():
    client, pipe = _redis_mock()
    counter = RedisVelocityCounter(client, retention_hours=24)

    await counter.increment(KEY, NOW)

    client.pipeline.assert_called_once_with(transaction=True)
    (key, mapping), _ = pipe.zadd.call_args
    assert key == KEY
    assert list(mapping.values()) == [NOW.timestamp()]
    pipe.zremrangebyscore.assert_called_once_with(KEY, "-inf", NOW.timestamp() - 24 * 3600)
    pipe.expire.assert_called_once_with(KEY, 24 * 3600)
    pipe.execute.assert_awaited_once()


async def test_redis_count_uses_exclusive_lower_bound():
    client = MagicMock()
    client.zcount = AsyncMock(return_value=3)
    counter = RedisVelocityCounter(client)

    assert await counter.count(KEY, 1, NOW) == 3

    hi = NOW.timestamp()
    client.zcount.assert_awaited_once_with(KEY, f"({hi - 3600}", hi)


async def test_redis_errors_surface_as_counter_unavailable():
    client = MagicMock()
    client.zcount = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    counter = RedisVelocityCounter(client)

    with pytest.raises(VelocityCounterUnavailable):
        await counter.count(KEY, 1, NOW)


async def test_redis_pipeline_failure_surfaces_as_counter_unavailable():
    client, pipe = _redis_mock()
    pipe.execute = AsyncMock(side_effect=RedisConnectionError("connection reset"))
    counter = RedisVelocityCounter(client)

    with pytest.raises(VelocityCounterUnavailable):
        await counter.increment(KEY, NOW)
