# bookingguard/services/risk_engine/assessment_store.py
"""
Assessment persistence and the manual review state machine.

Core assessment fields are written once. Afterwards only the review fields
(review_status, reviewer_ref, reviewer_notes, reviewed_at) change.
"""
import logging
import re
import uuid
from datetime import datetime
from typing import List

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.errors import InvalidTransition, NotFound, PersistenceFailure
from bookingguard.models import BookingFlag, FraudAssessment
from bookingguard.models.base import utcnow
from bookingguard.services.api.schemas import ReviewStatus

logger = logging.getLogger(__name__)

FLAG_REASON_TEMPLATE = "High fraud risk detected (score: {score})"
_FLAG_REASON_RE = re.compile(r"\(score: (\d+)\)")

ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: {
        ReviewStatus.APPROVED,
        ReviewStatus.REJECTED,
        ReviewStatus.UNDER_REVIEW,
        ReviewStatus.ESCALATED,
    },
    ReviewStatus.UNDER_REVIEW: {ReviewStatus.APPROVED, ReviewStatus.REJECTED},
    ReviewStatus.ESCALATED: {ReviewStatus.APPROVED, ReviewStatus.REJECTED},
    ReviewStatus.APPROVED: set(),
    ReviewStatus.REJECTED: set(),
}


def format_flag_reason(score: int) -> str:
    return FLAG_REASON_TEMPLATE.format(score=score)


def parse_flag_reason_score(reason: str) -> int:
    match = _FLAG_REASON_RE.search(reason or "")
    if match is None:
        raise ValueError(f"no score in flag reason {reason!r}")
    return int(match.group(1))


async def save_assessment(db: AsyncSession, assessment: FraudAssessment) -> FraudAssessment:
    """Store an assessment together with its booking flag, atomically."""
    if assessment.is_flagged:
        assessment.flags.append(
            BookingFlag(booking_ref=assessment.booking_ref, reason=assessment.flag_reason)
        )
    db.add(assessment)
    try:
        await db.commit()
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to persist assessment for booking {assessment.booking_ref}: {e}", exc_info=True)
        await db.rollback()
        raise PersistenceFailure(f"Assessment for booking {assessment.booking_ref} could not be stored") from e
    return assessment


async def get_assessment(db: AsyncSession, assessment_id: uuid.UUID) -> FraudAssessment:
    assessment = await db.get(FraudAssessment, assessment_id)
    if assessment is None:
        raise NotFound("Assessment", assessment_id)
    return assessment


async def list_assessments(
    db: AsyncSession,
    review_status: ReviewStatus | None = None,
    risk_level: str | None = None,
    booking_ref: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
) -> List[FraudAssessment]:
    query = select(FraudAssessment).order_by(FraudAssessment.created_at.desc())
    if review_status is not None:
        query = query.where(FraudAssessment.review_status == ReviewStatus(review_status).value)
    if risk_level:
        query = query.where(FraudAssessment.risk_level == risk_level)
    if booking_ref:
        query = query.where(FraudAssessment.booking_ref == booking_ref)
    if since is not None:
        query = query.where(FraudAssessment.created_at >= since)
    if until is not None:
        query = query.where(FraudAssessment.created_at <= until)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def transition_review(
    db: AsyncSession,
    assessment_id: uuid.UUID,
    new_status: ReviewStatus | str,
    reviewer_ref: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> FraudAssessment:
    new_status = ReviewStatus(new_status)
    assessment = await get_assessment(db, assessment_id)
    current = ReviewStatus(assessment.review_status)

    if not reviewer_ref or not reviewer_ref.strip():
        raise InvalidTransition(current.value, new_status.value, "reviewer_ref is required")
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, new_status.value)

    # Compare-and-set on the status so two reviewers cannot both move the same state.
    result = await db.execute(
        update(FraudAssessment)
        .where(
            FraudAssessment.assessment_id == assessment_id,
            FraudAssessment.review_status == current.value,
        )
        .values(
            review_status=new_status.value,
            reviewer_ref=reviewer_ref,
            reviewer_notes=notes,
            reviewed_at=now or utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidTransition(current.value, new_status.value, "assessment was reviewed concurrently")
    await db.commit()
    await db.refresh(assessment)
    logger.info(f"Assessment {assessment_id} moved {current.value} -> {new_status.value} by {reviewer_ref}")
    return assessment


async def get_undelivered_flags(db: AsyncSession, limit: int = 100) -> List[BookingFlag]:
    result = await db.execute(
        select(BookingFlag)
        .where(BookingFlag.delivered_at.is_(None))
        .order_by(BookingFlag.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def mark_flag_delivered(db: AsyncSession, flag_id: uuid.UUID, now: datetime | None = None) -> None:
    await db.execute(
        update(BookingFlag)
        .where(BookingFlag.flag_id == flag_id)
        .values(delivered_at=now or utcnow())
    )
    await db.commit()
