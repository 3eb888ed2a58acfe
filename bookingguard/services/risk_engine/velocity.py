# bookingguard/services/risk_engine/velocity.py
"""
Sliding-window attempt counters keyed by subject (email, IP, user).

`count(key, window_hours, as_of)` returns the number of increments recorded
for `key` with a timestamp in (as_of - window, as_of].
"""
from abc import ABC, abstractmethod
from bisect import bisect_right, insort
from datetime import datetime, timedelta
import ipaddress
import logging
import threading
import uuid

import redis.asyncio as redis
from redis.exceptions import RedisError

from bookingguard.common.errors import VelocityCounterUnavailable
from bookingguard.common.redis_utils import create_redis_client

logger = logging.getLogger(__name__)

KEY_PREFIX = "velocity"


def normalise_ip(value: str) -> str:
    value = value.strip()
    try:
        return ipaddress.ip_address(value).compressed
    except ValueError:
        return value


def subject_key(subject_type: str, value: str) -> str:
    if subject_type == "email":
        value = value.strip().lower()
    elif subject_type == "ip":
        value = normalise_ip(value)
    return f"{KEY_PREFIX}:{subject_type}:{value}"


class VelocityCounter(ABC):
    def __init__(self, retention_hours: float = 24):
        self.retention_hours = retention_hours

    def ensure_retention(self, hours: float) -> None:
        """Never keep less history than the longest configured window."""
        if hours > self.retention_hours:
            logger.info(f"Raising velocity retention from {self.retention_hours}h to {hours}h")
            self.retention_hours = hours

    @abstractmethod
    async def increment(self, key: str, at: datetime) -> None:
        ...

    @abstractmethod
    async def count(self, key: str, window_hours: float, as_of: datetime) -> int:
        ...

    @abstractmethod
    async def compact(self, now: datetime) -> int:
        """Drop increments older than the retention period. Returns how many were removed."""

    async def close(self) -> None:
        pass


class InMemoryVelocityCounter(VelocityCounter):
    """Process-local counter: a sorted timestamp list per key behind striped locks.

    Nothing inside a lock awaits, so increments from concurrent coroutines and
    threads are serialised per stripe and never lost. Every `compact_every`
    increments the whole map is compacted, so keys that go idle are dropped.
    """

    def __init__(self, retention_hours: float = 24, stripes: int = 64, compact_every: int = 1000):
        super().__init__(retention_hours)
        self._locks = [threading.Lock() for _ in range(stripes)]
        self._events: dict[str, list[float]] = {}
        self.compact_every = compact_every
        self._increments = 0
        self._tally_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    async def increment(self, key: str, at: datetime) -> None:
        ts = at.timestamp()
        horizon = ts - self.retention_hours * 3600
        with self._lock_for(key):
            events = self._events.setdefault(key, [])
            insort(events, ts)
            cut = bisect_right(events, horizon)
            if cut:
                del events[:cut]
        with self._tally_lock:
            self._increments += 1
            due = self._increments % self.compact_every == 0
        if due:
            removed = await self.compact(at)
            logger.debug(f"Compacted in-memory velocity counter: {removed} events dropped, {len(self._events)} keys kept")

    async def count(self, key: str, window_hours: float, as_of: datetime) -> int:
        hi = as_of.timestamp()
        lo = hi - window_hours * 3600
        with self._lock_for(key):
            events = self._events.get(key)
            if not events:
                return 0
            return bisect_right(events, hi) - bisect_right(events, lo)

    async def compact(self, now: datetime) -> int:
        horizon = (now - timedelta(hours=self.retention_hours)).timestamp()
        removed = 0
        for key in list(self._events):
            with self._lock_for(key):
                events = self._events.get(key)
                if events is None:
                    continue
                cut = bisect_right(events, horizon)
                if cut:
                    del events[:cut]
                    removed += cut
                if not events:
                    del self._events[key]
        return removed


class RedisVelocityCounter(VelocityCounter):
    """One sorted set per key, scored by epoch seconds.

    Each increment adds a unique member inside a MULTI/EXEC pipeline, so
    concurrent writers on the same key cannot overwrite each other.
    """

    def __init__(self, redis_client: redis.Redis, retention_hours: float = 24):
        super().__init__(retention_hours)
        self._redis = redis_client

    @property
    def retention_seconds(self) -> int:
        return int(self.retention_hours * 3600)

    async def increment(self, key: str, at: datetime) -> None:
        ts = at.timestamp()
        member = f"{ts:.6f}:{uuid.uuid4().hex}"
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zadd(key, {member: ts})
                pipe.zremrangebyscore(key, "-inf", ts - self.retention_seconds)
                pipe.expire(key, self.retention_seconds)
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise VelocityCounterUnavailable(f"increment failed for {key}: {e}") from e

    async def count(self, key: str, window_hours: float, as_of: datetime) -> int:
        hi = as_of.timestamp()
        lo = hi - window_hours * 3600
        try:
            return int(await self._redis.zcount(key, f"({lo}", hi))
        except (RedisError, OSError) as e:
            raise VelocityCounterUnavailable(f"count failed for {key}: {e}") from e

    async def compact(self, now: datetime) -> int:
        horizon = now.timestamp() - self.retention_seconds
        removed = 0
        try:
            async for key in self._redis.scan_iter(match=f"{KEY_PREFIX}:*"):
                removed += int(await self._redis.zremrangebyscore(key, "-inf", horizon))
        except (RedisError, OSError) as e:
            raise VelocityCounterUnavailable(f"compaction failed: {e}") from e
        return removed

    async def close(self) -> None:
        await self._redis.aclose()


def create_velocity_counter(backend: str, redis_url: str | None = None, retention_hours: float = 24) -> VelocityCounter:
    if backend == "memory":
        return InMemoryVelocityCounter(retention_hours=retention_hours)
    if backend == "redis":
        return RedisVelocityCounter(create_redis_client(redis_url), retention_hours=retention_hours)
    raise ValueError(f"unknown velocity backend {backend!r}")
