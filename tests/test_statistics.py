from datetime import timedelta

from bookingguard.models import FraudAssessment
from bookingguard.services.risk_engine import statistics

from .conftest import NOW


async def _seed(db, rows):
    for i, (days_ago, level, score, auto_block, requires_review) in enumerate(rows):
        created = NOW - timedelta(days=days_ago)
        db.add(FraudAssessment(
            booking_ref=f"bk_{i}",
            risk_score=score,
            risk_level=level,
            matched_rules=[],
            auto_block=auto_block,
            requires_review=requires_review,
            created_at=created,
            updated_at=created,
        ))
    await db.commit()


async def test_statistics_on_empty_store(db):
    stats = await statistics.fraud_statistics(db, since_days=30, now=NOW)

    assert stats.total == 0
    assert stats.fraud_rate == 0
    assert stats.avg_score == 0.0
    assert stats.high_count == stats.medium_count == stats.low_count == stats.blocked_count == 0
    assert await statistics.daily_trends(db, days=30, now=NOW) == []


async def test_statistics_aggregate_window(db):
    await _seed(db, [
        (0, "HIGH", 90, True, True),
        (0, "LOW", 10, False, False),
        (1, "MEDIUM", 40, False, True),
        (1, "LOW", 0, False, False),
        (45, "HIGH", 100, True, True),  # outside the 30 day window
    ])

    stats = await statistics.fraud_statistics(db, since_days=30, now=NOW)

    assert stats.since_days == 30
    assert stats.total == 4
    assert (stats.high_count, stats.medium_count, stats.low_count) == (1, 1, 2)
    assert stats.avg_score == 35.0
    assert stats.fraud_rate == 0.25
    assert stats.blocked_count == 1

    assert (await statistics.fraud_statistics(db, since_days=60, now=NOW)).total == 5


async def test_daily_trends_newest_first(db):
    await _seed(db, [
        (0, "HIGH", 90, True, True),
        (0, "LOW", 10, False, False),
        (2, "MEDIUM", 40, False, True),
    ])

    trends = await statistics.daily_trends(db, days=30, now=NOW)

    assert [t.day for t in trends] == [NOW.date(), (NOW - timedelta(days=2)).date()]
    today = trends[0]
    assert (today.total, today.high_count, today.low_count) == (2, 1, 1)
    assert today.avg_score == 50.0
    assert today.blocked_count == 1
    assert today.review_count == 1
    assert trends[1].medium_count == 1
