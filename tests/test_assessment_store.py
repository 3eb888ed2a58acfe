import uuid
from datetime import timedelta

import pytest

from bookingguard.common.errors import InvalidTransition, NotFound
from bookingguard.models import FraudAssessment
from bookingguard.services.api.schemas import ReviewStatus
from bookingguard.services.risk_engine import assessment_store

from .conftest import NOW


async def _assessment(db, booking_ref="bk_1", **overrides) -> FraudAssessment:
    values = dict(
        booking_ref=booking_ref,
        user_ref="user_1",
        risk_score=45,
        risk_level="MEDIUM",
        matched_rules=[],
        requires_review=True,
        created_at=NOW,
        updated_at=NOW,
    )
    values.update(overrides)
    return await assessment_store.save_assessment(db, FraudAssessment(**values))


def test_flag_reason_round_trips_score():
    reason = assessment_store.format_flag_reason(85)
    assert reason == "High fraud risk detected (score: 85)"
    assert assessment_store.parse_flag_reason_score(reason) == 85
    with pytest.raises(ValueError):
        assessment_store.parse_flag_reason_score("looked odd")


async def test_flagged_assessment_is_stored_with_its_booking_flag(db):
    assessment = await _assessment(
        db, risk_score=90, risk_level="HIGH", is_flagged=True,
        flag_reason=assessment_store.format_flag_reason(90),
    )

    flags = await assessment_store.get_undelivered_flags(db)
    assert len(flags) == 1
    assert flags[0].assessment_id == assessment.assessment_id
    assert assessment_store.parse_flag_reason_score(flags[0].reason) == 90

    await assessment_store.mark_flag_delivered(db, flags[0].flag_id, now=NOW)
    assert await assessment_store.get_undelivered_flags(db) == []


async def test_unflagged_assessment_has_no_booking_flag(db):
    await _assessment(db)
    assert await assessment_store.get_undelivered_flags(db) == []


@pytest.mark.parametrize(
    "target",
    [ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.UNDER_REVIEW, ReviewStatus.ESCALATED],
)
async def test_pending_moves_to_any_review_state_exactly_once(db, target):
    assessment = await _assessment(db)

    reviewed = await assessment_store.transition_review(
        db, assessment.assessment_id, target, "reviewer_7", notes="checked ID", now=NOW + timedelta(hours=1)
    )

    assert reviewed.review_status == target.value
    assert reviewed.reviewer_ref == "reviewer_7"
    assert reviewed.reviewer_notes == "checked ID"
    assert reviewed.reviewed_at == NOW + timedelta(hours=1)
    with pytest.raises(InvalidTransition):
        await assessment_store.transition_review(db, assessment.assessment_id, target, "reviewer_8")


@pytest.mark.parametrize("terminal", [ReviewStatus.APPROVED, ReviewStatus.REJECTED])
@pytest.mark.parametrize("target", list(ReviewStatus))
async def test_terminal_states_reject_every_transition(db, terminal, target):
    assessment = await _assessment(db)
    await assessment_store.transition_review(db, assessment.assessment_id, terminal, "reviewer_7")

    with pytest.raises(InvalidTransition):
        await assessment_store.transition_review(db, assessment.assessment_id, target, "reviewer_8")


async def test_intermediate_states_only_resolve(db):
    assessment = await _assessment(db)
    await assessment_store.transition_review(db, assessment.assessment_id, "under_review", "reviewer_7")

    with pytest.raises(InvalidTransition):
        await assessment_store.transition_review(db, assessment.assessment_id, "escalated", "reviewer_7")
    with pytest.raises(InvalidTransition):
        await assessment_store.transition_review(db, assessment.assessment_id, "pending", "reviewer_7")

    resolved = await assessment_store.transition_review(db, assessment.assessment_id, "rejected", "reviewer_9")
    assert resolved.review_status == "rejected"
    assert resolved.reviewer_ref == "reviewer_9"


async def test_reviewer_is_required(db):
    assessment = await _assessment(db)

    with pytest.raises(InvalidTransition):
        await assessment_store.transition_review(db, assessment.assessment_id, "approved", "  ")

    stored = await assessment_store.get_assessment(db, assessment.assessment_id)
    assert stored.review_status == "pending"


async def test_unknown_assessment(db):
    with pytest.raises(NotFound):
        await assessment_store.get_assessment(db, uuid.uuid4())
    with pytest.raises(NotFound):
        await assessment_store.transition_review(db, uuid.uuid4(), "approved", "reviewer_7")


async def test_list_assessments_filters(db):
    first = await _assessment(db, "bk_1", created_at=NOW - timedelta(days=2))
    await _assessment(db, "bk_2", risk_level="HIGH", risk_score=80)
    await _assessment(db, "bk_3", risk_level="LOW", risk_score=5, requires_review=False)
    await assessment_store.transition_review(db, first.assessment_id, "approved", "reviewer_7")

    newest_first = await assessment_store.list_assessments(db)
    assert [a.booking_ref for a in newest_first][-1] == "bk_1"

    pending = await assessment_store.list_assessments(db, review_status=ReviewStatus.PENDING)
    assert sorted(a.booking_ref for a in pending) == ["bk_2", "bk_3"]

    high = await assessment_store.list_assessments(db, risk_level="HIGH")
    assert [a.booking_ref for a in high] == ["bk_2"]

    recent = await assessment_store.list_assessments(db, since=NOW - timedelta(days=1))
    assert sorted(a.booking_ref for a in recent) == ["bk_2", "bk_3"]

    assert [a.booking_ref for a in await assessment_store.list_assessments(db, booking_ref="bk_3")] == ["bk_3"]
