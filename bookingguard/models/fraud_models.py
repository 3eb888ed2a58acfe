# bookingguard/models/fraud_models.py
"""
Fraud-related ORM models: FraudRule, FraudAssessment, BookingFlag and Alert.
"""
import uuid

from sqlalchemy import Column, String, Integer, Boolean, Text, JSON, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from bookingguard.models.base import Base, UTCDateTime, utcnow


class FraudRule(Base):
    __tablename__ = "fraud_rules"

    rule_id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(String(20), nullable=False, index=True)
    conditions = Column(JSON, nullable=False, default=dict)
    score_contribution = Column(Integer, default=0, nullable=False)
    flag_for_review = Column(Boolean, default=False, nullable=False)
    create_alert = Column(Boolean, default=False, nullable=False)
    auto_block = Column(Boolean, default=False, nullable=False)
    # Ranking only, never part of the score
    weight = Column(Integer, default=10, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<FraudRule(rule_id={self.rule_id}, name={self.name}, type={self.rule_type})>"


class FraudAssessment(Base):
    __tablename__ = "fraud_assessments"

    assessment_id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    booking_ref = Column(String(100), nullable=False, index=True)
    user_ref = Column(String(100), nullable=True, index=True)
    risk_score = Column(Integer, default=0, nullable=False)
    risk_level = Column(String(10), nullable=False, index=True)
    # [{"rule_id", "rule_name", "score_contribution", "details"}] in evaluation order
    matched_rules = Column(JSON, nullable=False, default=list)
    skipped_rules = Column(JSON, nullable=False, default=list)
    blacklist_hit = Column(Boolean, default=False, nullable=False)
    requires_review = Column(Boolean, default=False, nullable=False, index=True)
    auto_block = Column(Boolean, default=False, nullable=False)
    create_alert = Column(Boolean, default=False, nullable=False)
    context_snapshot = Column(JSON, nullable=False, default=dict)
    is_flagged = Column(Boolean, default=False, nullable=False)
    flag_reason = Column(Text, nullable=True)
    review_status = Column(String(20), default="pending", nullable=False, index=True)
    reviewer_ref = Column(String(100), nullable=True)
    reviewer_notes = Column(Text, nullable=True)
    reviewed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    flags = relationship("BookingFlag", back_populates="assessment", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="assessment")

    def __repr__(self):
        return f"<FraudAssessment(id={self.assessment_id}, booking={self.booking_ref}, score={self.risk_score}, level={self.risk_level})>"


class BookingFlag(Base):
    """flagBooking signal, written in the same transaction as its assessment."""

    __tablename__ = "booking_flags"

    flag_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_ref = Column(String(100), nullable=False, index=True)
    assessment_id = Column(Uuid, ForeignKey("fraud_assessments.assessment_id", ondelete="CASCADE"), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    delivered_at = Column(UTCDateTime, nullable=True)

    assessment = relationship("FraudAssessment", back_populates="flags")


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("idx_alerts_user_unread", "user_ref", "is_read", "created_at"),
    )

    alert_id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    alert_type = Column(String(50), nullable=False, index=True)
    severity = Column(String(10), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    booking_ref = Column(String(100), nullable=True, index=True)
    user_ref = Column(String(100), nullable=True)
    assessment_id = Column(Uuid, ForeignKey("fraud_assessments.assessment_id", ondelete="SET NULL"), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_by = Column(String(100), nullable=True)
    read_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)

    assessment = relationship("FraudAssessment", back_populates="alerts")
