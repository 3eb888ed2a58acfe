# bookingguard/services/risk_engine/statistics.py
from collections import defaultdict
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.models import FraudAssessment
from bookingguard.models.base import utcnow
from bookingguard.services.api.schemas import DailyTrend, FraudStatistics, RiskLevel


def _level_count(level: RiskLevel):
    return func.count(case((FraudAssessment.risk_level == level.value, 1)))


async def fraud_statistics(db: AsyncSession, since_days: int = 30, now: datetime | None = None) -> FraudStatistics:
    """Aggregate assessments created in the last `since_days` days."""
    since = (now or utcnow()) - timedelta(days=since_days)
    row = (
        await db.execute(
            select(
                func.count(FraudAssessment.assessment_id),
                _level_count(RiskLevel.HIGH),
                _level_count(RiskLevel.MEDIUM),
                _level_count(RiskLevel.LOW),
                func.avg(FraudAssessment.risk_score),
                func.count(case((FraudAssessment.auto_block == True, 1))),  # noqa: E712
            ).where(FraudAssessment.created_at >= since)
        )
    ).one()
    total, high, medium, low, avg_score, blocked = row
    return FraudStatistics(
        since_days=since_days,
        total=total,
        high_count=high,
        medium_count=medium,
        low_count=low,
        avg_score=round(float(avg_score), 2) if avg_score is not None else 0.0,
        fraud_rate=round(high / total, 4) if total else 0.0,
        blocked_count=blocked,
    )


async def daily_trends(db: AsyncSession, days: int = 30, now: datetime | None = None) -> List[DailyTrend]:
    """Per-day breakdown, newest day first. Days without assessments are omitted."""
    since = (now or utcnow()) - timedelta(days=days)
    result = await db.execute(
        select(
            FraudAssessment.created_at,
            FraudAssessment.risk_level,
            FraudAssessment.risk_score,
            FraudAssessment.auto_block,
            FraudAssessment.requires_review,
        ).where(FraudAssessment.created_at >= since)
    )
    buckets = defaultdict(list)
    for created_at, level, score, auto_block, requires_review in result.all():
        buckets[created_at.date()].append((level, score, auto_block, requires_review))

    trends = []
    for day in sorted(buckets, reverse=True):
        rows = buckets[day]
        trends.append(DailyTrend(
            day=day,
            total=len(rows),
            high_count=sum(1 for r in rows if r[0] == RiskLevel.HIGH.value),
            medium_count=sum(1 for r in rows if r[0] == RiskLevel.MEDIUM.value),
            low_count=sum(1 for r in rows if r[0] == RiskLevel.LOW.value),
            avg_score=round(sum(r[1] for r in rows) / len(rows), 2),
            blocked_count=sum(1 for r in rows if r[2]),
            review_count=sum(1 for r in rows if r[3]),
        ))
    return trends
