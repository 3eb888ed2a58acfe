# bookingguard/services/api/schemas/statistics.py

from datetime import date

from pydantic import BaseModel


class FraudStatistics(BaseModel):
    since_days: int
    total: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    avg_score: float = 0.0
    # high_count / total, 0 when there are no assessments
    fraud_rate: float = 0.0
    blocked_count: int = 0


class DailyTrend(BaseModel):
    day: date
    total: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    avg_score: float = 0.0
    blocked_count: int = 0
    review_count: int = 0
