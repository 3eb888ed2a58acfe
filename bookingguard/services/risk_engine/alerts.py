# bookingguard/services/risk_engine/alerts.py
"""
Alert creation for risky assessments, plus the alert queries used by the
dashboard and notification collaborator.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookingguard.common.errors import NotFound
from bookingguard.models import Alert, FraudAssessment
from bookingguard.models.base import utcnow
from bookingguard.services.api.schemas import AlertSeverity, RiskLevel
from bookingguard.services.risk_engine.notifications import EventPublisher, alert_payload

logger = logging.getLogger(__name__)

ALERT_TYPE_FRAUD = "fraud_detection"

_SEVERITY_FOR_LEVEL = {
    RiskLevel.LOW.value: AlertSeverity.LOW,
    RiskLevel.MEDIUM.value: AlertSeverity.MEDIUM,
    RiskLevel.HIGH.value: AlertSeverity.HIGH,
}


def should_alert(assessment: FraudAssessment) -> bool:
    return assessment.risk_level == RiskLevel.HIGH.value or bool(assessment.create_alert)


def severity_for(assessment: FraudAssessment) -> AlertSeverity:
    if assessment.blacklist_hit:
        return AlertSeverity.CRITICAL
    return _SEVERITY_FOR_LEVEL[assessment.risk_level]


class AlertDispatcher:
    """Stores an Alert for qualifying assessments and pushes it to the publisher.

    Runs after the assessment is committed. Nothing raised here reaches the
    caller, so a failed dispatch never affects the stored assessment.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        publisher: EventPublisher | None = None,
        retention_days: int = 180,
        publish_timeout: float = 2.0,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.retention_days = retention_days
        self.publish_timeout = publish_timeout

    def build_alert(self, assessment: FraudAssessment, now: datetime) -> Alert:
        severity = severity_for(assessment)
        rule_names = [m["rule_name"] for m in assessment.matched_rules]
        if assessment.blacklist_hit:
            title = f"Blacklisted booking attempt: {assessment.booking_ref}"
        else:
            title = f"{assessment.risk_level.title()} fraud risk: booking {assessment.booking_ref}"
        message = (
            f"Booking {assessment.booking_ref} scored {assessment.risk_score} ({assessment.risk_level})."
            f" Matched rules: {', '.join(rule_names) or 'none'}."
        )
        if assessment.auto_block:
            message += " Booking was auto-blocked."
        return Alert(
            alert_type=ALERT_TYPE_FRAUD,
            severity=severity.value,
            title=title,
            message=message,
            booking_ref=assessment.booking_ref,
            user_ref=assessment.user_ref,
            assessment_id=assessment.assessment_id,
            details={
                "risk_score": assessment.risk_score,
                "risk_level": assessment.risk_level,
                "auto_block": assessment.auto_block,
                "blacklist_hit": assessment.blacklist_hit,
                "matched_rules": rule_names,
            },
            created_at=now,
            expires_at=now + timedelta(days=self.retention_days),
        )

    async def dispatch(self, assessment: FraudAssessment, now: datetime | None = None) -> Alert | None:
        if not should_alert(assessment):
            return None
        now = now or utcnow()
        alert = self.build_alert(assessment, now)
        try:
            async with self.session_factory() as db:
                db.add(alert)
                await db.commit()
        except Exception as e:
            logger.error(f"Failed to store alert for assessment {assessment.assessment_id}: {e}", exc_info=True)
            return None

        logger.info(f"{alert.severity} alert {alert.alert_id} raised for booking {alert.booking_ref}")
        if self.publisher is not None:
            try:
                await asyncio.wait_for(self.publisher.publish_alert(alert_payload(alert)), self.publish_timeout)
            except Exception as e:
                logger.error(f"Failed to deliver alert {alert.alert_id}: {e}", exc_info=True)
        return alert


async def get_alert(db: AsyncSession, alert_id: uuid.UUID) -> Alert:
    alert = await db.get(Alert, alert_id)
    if alert is None:
        raise NotFound("Alert", alert_id)
    return alert


async def list_alerts(
    db: AsyncSession,
    unread_only: bool = False,
    severity: AlertSeverity | None = None,
    user_ref: str | None = None,
    booking_ref: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> List[Alert]:
    query = select(Alert).order_by(Alert.created_at.desc())
    if unread_only:
        query = query.where(Alert.is_read == False)  # noqa: E712
    if severity is not None:
        query = query.where(Alert.severity == AlertSeverity(severity).value)
    if user_ref:
        query = query.where(Alert.user_ref == user_ref)
    if booking_ref:
        query = query.where(Alert.booking_ref == booking_ref)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def count_unread_alerts(db: AsyncSession, user_ref: str | None = None) -> int:
    query = select(func.count()).select_from(Alert).where(Alert.is_read == False)  # noqa: E712
    if user_ref is not None:
        query = query.where(Alert.user_ref == user_ref)
    return int((await db.execute(query)).scalar_one())


async def mark_alert_read(db: AsyncSession, alert_id: uuid.UUID, reader_ref: str, now: datetime | None = None) -> Alert:
    """Acknowledge an alert. Re-reading keeps the first reader and time."""
    alert = await get_alert(db, alert_id)
    if not alert.is_read:
        alert.is_read = True
        alert.read_by = reader_ref
        alert.read_at = now or utcnow()
        await db.commit()
        await db.refresh(alert)
    return alert


async def purge_expired_alerts(db: AsyncSession, now: datetime | None = None) -> int:
    result = await db.execute(
        delete(Alert).where(Alert.expires_at.is_not(None), Alert.expires_at <= (now or utcnow()))
    )
    await db.commit()
    return result.rowcount or 0
