import asyncio
import os

# Settings are read at import time, point them at test backends first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VELOCITY_BACKEND", "memory")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bookingguard.common.errors import VelocityCounterUnavailable
from bookingguard.models import Base
from bookingguard.services.api.schemas import BookingContext
from bookingguard.services.risk_engine import rule_catalog
from bookingguard.services.risk_engine.notifications import EventPublisher
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator
from bookingguard.services.risk_engine.velocity import InMemoryVelocityCounter

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FailingCounter(InMemoryVelocityCounter):
    async def increment(self, key, at):
        raise VelocityCounterUnavailable("redis down")


class SlowCounter(InMemoryVelocityCounter):
    async def increment(self, key, at):
        await asyncio.sleep(1)


class RecordingPublisher(EventPublisher):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.alerts = []
        self.flags = []
        self.assessments = []

    def _check(self):
        if self.fail:
            raise ConnectionError("broker unreachable")

    async def publish_alert(self, payload: dict) -> None:
        self._check()
        self.alerts.append(payload)

    async def publish_booking_flag(self, payload: dict) -> None:
        self._check()
        self.flags.append(payload)

    async def publish_assessment(self, payload: dict) -> None:
        self._check()
        self.assessments.append(payload)


class HangingPublisher(EventPublisher):
    """A broker that accepts the connection and never acknowledges."""

    async def publish_alert(self, payload: dict) -> None:
        await asyncio.sleep(2)

    async def publish_booking_flag(self, payload: dict) -> None:
        await asyncio.sleep(2)

    async def publish_assessment(self, payload: dict) -> None:
        await asyncio.sleep(2)


def make_context(**overrides) -> BookingContext:
    """A low-risk booking; override fields to make it interesting."""
    data = {
        "booking_ref": "bk_1",
        "user_ref": "user_1",
        "amount": 5000,
        "days_notice": 45,
        "submitted_at": NOW,
        "email": "client@example.com",
        "ip_address": "203.0.113.10",
        "account_age_days": 200,
        "completed_bookings": 2,
        "cancelled_bookings": 0,
    }
    data.update(overrides)
    return BookingContext.from_payload(data)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookingguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def velocity():
    return InMemoryVelocityCounter(retention_hours=24)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def evaluator(session_factory, velocity, publisher, clock):
    return RiskEvaluator(session_factory, velocity, publisher=publisher, clock=clock)


@pytest_asyncio.fixture
async def default_rules(db):
    return await rule_catalog.seed_default_rules(db)
