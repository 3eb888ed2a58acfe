# bookingguard/services/api/schemas/assessment.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    ESCALATED = "escalated"
    APPROVED = "approved"
    REJECTED = "rejected"


class MatchedRule(BaseModel):
    rule_id: uuid.UUID
    rule_name: str
    score_contribution: int
    details: Dict[str, Any] = Field(default_factory=dict)


class AssessmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assessment_id: uuid.UUID
    booking_ref: str
    user_ref: Optional[str] = None
    risk_score: int
    risk_level: RiskLevel
    matched_rules: List[MatchedRule]
    skipped_rules: List[str] = Field(default_factory=list)
    blacklist_hit: bool
    requires_review: bool
    auto_block: bool
    is_flagged: bool
    flag_reason: Optional[str] = None
    review_status: ReviewStatus
    reviewer_ref: Optional[str] = None
    reviewer_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime


class ReviewTransitionRequest(BaseModel):
    status: ReviewStatus
    reviewer_ref: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None


class UnassessedDecision(BaseModel):
    """Fail-safe answer when no assessment could be produced."""

    booking_ref: str
    assessed: bool = False
    requires_review: bool = True
    auto_block: bool = False
    error: str
