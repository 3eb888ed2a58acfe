# bookingguard/services/api/api/endpoints_v1.py

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.config import settings
from bookingguard.services.api.dependencies import get_api_key, get_db_session, get_evaluator
from bookingguard.services.api.schemas import (
    AlertReadRequest,
    AlertResponse,
    AlertSeverity,
    AssessmentResponse,
    BlacklistEntryCreate,
    BlacklistEntryResponse,
    BlacklistExpiryUpdate,
    BlacklistKind,
    BookingContext,
    DailyTrend,
    FraudStatistics,
    ReviewStatus,
    ReviewTransitionRequest,
    RiskLevel,
    RuleResponse,
    RuleUpdate,
    UnreadAlertCount,
)
from bookingguard.services.risk_engine import alerts, assessment_store, blacklist, rule_catalog, statistics
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator, evaluate_with_timeout

LOG = logging.getLogger("bookingguard.api")

router = APIRouter()


def _context_from(payload: dict) -> BookingContext:
    try:
        return BookingContext.from_payload(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )


# ----------------------
# Evaluation & assessments
# ----------------------
@router.post("/assessments/evaluate", response_model=AssessmentResponse, status_code=status.HTTP_201_CREATED)
async def evaluate_booking_endpoint(
    payload: dict = Body(...),
    api_key: str = Depends(get_api_key),
    evaluator: RiskEvaluator = Depends(get_evaluator),
):
    """
    Scores a booking submission and stores the assessment.
    """
    context = _context_from(payload)
    return await evaluate_with_timeout(evaluator, context, settings.EVALUATION_TIMEOUT_SECONDS)


@router.post("/assessments/batch-evaluate", response_model=List[dict])
async def batch_evaluate_endpoint(
    payloads: List[dict] = Body(...),
    api_key: str = Depends(get_api_key),
    evaluator: RiskEvaluator = Depends(get_evaluator),
):
    """
    Re-analyses a batch of bookings, reporting success or failure per booking.
    """
    contexts = [_context_from(p) for p in payloads]
    results = await evaluator.evaluate_many(contexts)
    return [
        {**r, "assessment": r["assessment"].model_dump(mode="json")} if r["success"] else r
        for r in results
    ]


@router.get("/assessments/", response_model=List[AssessmentResponse])
async def list_assessments_endpoint(
    review_status: Optional[ReviewStatus] = None,
    risk_level: Optional[RiskLevel] = None,
    booking_ref: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Lists assessments, newest first, optionally filtered by review status.
    """
    return await assessment_store.list_assessments(
        db,
        review_status=review_status,
        risk_level=risk_level.value if risk_level else None,
        booking_ref=booking_ref,
        since=start_date,
        until=end_date,
        skip=skip,
        limit=limit,
    )


@router.get("/assessments/{assessment_id}", response_model=AssessmentResponse)
async def get_assessment_endpoint(
    assessment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
):
    return await assessment_store.get_assessment(db, assessment_id)


@router.post("/assessments/{assessment_id}/review", response_model=AssessmentResponse)
async def review_assessment_endpoint(
    assessment_id: uuid.UUID,
    transition: ReviewTransitionRequest,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Moves an assessment through the manual review workflow.
    """
    return await assessment_store.transition_review(
        db, assessment_id, transition.status, transition.reviewer_ref, transition.notes
    )


# ----------------------
# Statistics
# ----------------------
@router.get("/statistics", response_model=FraudStatistics)
async def get_statistics_endpoint(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db_session),
):
    return await statistics.fraud_statistics(db, since_days=days)


@router.get("/statistics/trends", response_model=List[DailyTrend])
async def get_trends_endpoint(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db_session),
):
    return await statistics.daily_trends(db, days=days)


# ----------------------
# Fraud rules
# ----------------------
@router.get("/fraud-rules/", response_model=List[RuleResponse])
async def list_fraud_rules_endpoint(
    active_only: bool = False,
    rule_type: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Lists fraud rules ranked by weight.
    """
    return await rule_catalog.list_rules(db, active_only=active_only, rule_type=rule_type, skip=skip, limit=limit)


@router.post("/fraud-rules/", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_fraud_rule_endpoint(
    definition: dict = Body(...),
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    """
    Creates a rule. The body is validated against the model for its rule_type.
    """
    return await rule_catalog.create_rule(db, definition)


@router.get("/fraud-rules/{rule_id}", response_model=RuleResponse)
async def get_fraud_rule_endpoint(
    rule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db_session),
):
    return await rule_catalog.get_rule(db, rule_id)


@router.patch("/fraud-rules/{rule_id}", response_model=RuleResponse)
async def update_fraud_rule_endpoint(
    rule_id: uuid.UUID,
    changes: dict = Body(...),
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    return await rule_catalog.update_rule(db, rule_id, changes)


@router.delete("/fraud-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fraud_rule_endpoint(
    rule_id: uuid.UUID,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    await rule_catalog.delete_rule(db, rule_id)


# ----------------------
# Blacklists
# ----------------------
@router.get("/blacklist/{kind}", response_model=List[BlacklistEntryResponse])
async def list_blacklist_endpoint(
    kind: BlacklistKind,
    include_expired: bool = True,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
):
    return await blacklist.list_entries(db, kind, include_expired=include_expired, skip=skip, limit=limit)


@router.get("/blacklist/{kind}/check")
async def check_blacklist_endpoint(
    kind: BlacklistKind,
    value: str,
    db: AsyncSession = Depends(get_db_session),
):
    return {"kind": kind.value, "value": value, "blacklisted": await blacklist.is_blacklisted(db, kind, value)}


@router.post("/blacklist/{kind}", response_model=BlacklistEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_blacklist_entry_endpoint(
    kind: BlacklistKind,
    entry: BlacklistEntryCreate,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    return await blacklist.add_entry(
        db, kind, entry.value, reason=entry.reason, added_by=entry.added_by, expires_at=entry.expires_at
    )


@router.patch("/blacklist/{kind}/{value}", response_model=BlacklistEntryResponse)
async def update_blacklist_expiry_endpoint(
    kind: BlacklistKind,
    value: str,
    update: BlacklistExpiryUpdate,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    return await blacklist.update_expiry(db, kind, value, update.expires_at)


@router.delete("/blacklist/{kind}/{value}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_blacklist_entry_endpoint(
    kind: BlacklistKind,
    value: str,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    await blacklist.remove_entry(db, kind, value)


# ----------------------
# Alerts
# ----------------------
@router.get("/alerts/", response_model=List[AlertResponse])
async def list_alerts_endpoint(
    unread_only: bool = False,
    severity: Optional[AlertSeverity] = None,
    user_ref: Optional[str] = None,
    booking_ref: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
):
    return await alerts.list_alerts(
        db, unread_only=unread_only, severity=severity, user_ref=user_ref,
        booking_ref=booking_ref, skip=skip, limit=limit,
    )


@router.get("/alerts/unread-count", response_model=UnreadAlertCount)
async def unread_alert_count_endpoint(
    user_ref: Optional[str] = None,
    db: AsyncSession = Depends(get_db_session),
):
    return UnreadAlertCount(user_ref=user_ref, unread=await alerts.count_unread_alerts(db, user_ref))


@router.post("/alerts/{alert_id}/read", response_model=AlertResponse)
async def mark_alert_read_endpoint(
    alert_id: uuid.UUID,
    body: AlertReadRequest,
    api_key: str = Depends(get_api_key),
    db: AsyncSession = Depends(get_db_session),
):
    return await alerts.mark_alert_read(db, alert_id, body.reader_ref)
