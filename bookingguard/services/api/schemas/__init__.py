# bookingguard/services/api/schemas/__init__.py

from .booking import BookingContext
from .rule import (
    RuleCreate,
    RuleUpdate,
    RuleResponse,
    PatternConditions,
    EmailConditions,
    VelocityConditions,
    HistoryConditions,
    CONDITION_MODELS,
    rule_create_adapter,
)
from .assessment import (
    RiskLevel,
    ReviewStatus,
    MatchedRule,
    AssessmentResponse,
    ReviewTransitionRequest,
    UnassessedDecision,
)
from .blacklist import BlacklistKind, BlacklistEntryCreate, BlacklistExpiryUpdate, BlacklistEntryResponse
from .alert import AlertSeverity, AlertResponse, AlertReadRequest, UnreadAlertCount
from .statistics import FraudStatistics, DailyTrend
