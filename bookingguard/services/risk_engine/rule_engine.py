# bookingguard/services/risk_engine/rule_engine.py
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from bookingguard.common.config import Settings
from bookingguard.common.errors import (
    BookingGuardError,
    EvaluationUnavailable,
    InvalidRuleDefinition,
    MissingContextField,
    VelocityCounterUnavailable,
)
from bookingguard.models import FraudAssessment
from bookingguard.models.base import utcnow
from bookingguard.services.api.schemas import AssessmentResponse, BlacklistKind, BookingContext, RiskLevel
from bookingguard.services.risk_engine import assessment_store, blacklist, rule_catalog
from bookingguard.services.risk_engine.alerts import AlertDispatcher
from bookingguard.services.risk_engine.notifications import EventPublisher, flag_payload
from bookingguard.services.risk_engine.rules import BaseRule, EvaluationScope, VelocityRule, compile_rule
from bookingguard.services.risk_engine.velocity import VelocityCounter, subject_key

logger = logging.getLogger(__name__)

# Attempts are recorded for every subject present, whether or not a velocity
# rule currently watches it, so a rule added later sees recent history.
_RECORDED_SUBJECTS = (("email", "email"), ("ip", "ip_address"), ("user", "user_ref"))


@dataclass(frozen=True)
class RiskPolicy:
    medium_threshold: int = 30
    high_threshold: int = 70
    max_score: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RiskPolicy":
        return cls(
            medium_threshold=settings.RISK_MEDIUM_THRESHOLD,
            high_threshold=settings.RISK_HIGH_THRESHOLD,
            max_score=settings.MAX_RISK_SCORE,
        )

    def clamp(self, score: int) -> int:
        return max(0, min(score, self.max_score))

    def level_for(self, score: int) -> RiskLevel:
        if score >= self.high_threshold:
            return RiskLevel.HIGH
        if score >= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


@dataclass
class _Snapshot:
    rules: List[BaseRule]
    email_blacklisted: bool
    ip_blacklisted: bool


class RiskEvaluator:
    """
    Scores booking submissions against the active rule catalog.

    Each evaluate() call takes its own snapshot of the catalog and blacklist,
    so concurrent evaluations share nothing but the velocity counter.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        velocity: VelocityCounter,
        publisher: EventPublisher | None = None,
        policy: RiskPolicy | None = None,
        alert_retention_days: int = 180,
        publish_timeout: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.velocity = velocity
        self.publisher = publisher
        self.policy = policy or RiskPolicy()
        self.clock = clock
        self.publish_timeout = publish_timeout
        self.dispatcher = AlertDispatcher(
            session_factory, publisher, retention_days=alert_retention_days, publish_timeout=publish_timeout
        )

    async def _load_snapshot(self, context: BookingContext, as_of: datetime) -> _Snapshot:
        try:
            async with self.session_factory() as db:
                rows = await rule_catalog.get_active_rules(db)
                email_hit = await blacklist.is_blacklisted(db, BlacklistKind.EMAIL, context.email, as_of)
                ip_hit = await blacklist.is_blacklisted(db, BlacklistKind.IP, context.ip_address, as_of)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Rule catalog unavailable while evaluating booking {context.booking_ref}: {e}", exc_info=True)
            raise EvaluationUnavailable("Rule catalog or blacklist unreachable") from e

        rules = []
        for row in rows:
            try:
                rules.append(compile_rule(row))
            except InvalidRuleDefinition as e:
                logger.warning(f"Skipping stored rule {row.name!r}: {e}")
        rules.sort()
        return _Snapshot(rules=rules, email_blacklisted=email_hit, ip_blacklisted=ip_hit)

    async def _record_attempt(self, context: BookingContext, as_of: datetime, rules: List[BaseRule]) -> None:
        windows = [r.conditions.window_hours for r in rules if isinstance(r, VelocityRule)]
        if windows:
            self.velocity.ensure_retention(max(windows))
        for subject, field in _RECORDED_SUBJECTS:
            if field in context.malformed_fields:
                continue
            value = getattr(context, field)
            if value:
                await self.velocity.increment(subject_key(subject, value), as_of)

    async def _match(self, rules: List[BaseRule], scope: EvaluationScope):
        matched, skipped = [], []
        for rule in rules:
            try:
                is_triggered, details = await rule.evaluate(scope)
            except (MissingContextField, ValueError, TypeError, ArithmeticError) as e:
                logger.warning(f"Rule {rule.name!r} skipped for booking {scope.context.booking_ref}: {e}")
                skipped.append(rule.name)
                continue
            if is_triggered:
                matched.append((rule, details))
        return matched, skipped

    async def _assess(self, context: BookingContext, as_of: datetime) -> FraudAssessment:
        snapshot = await self._load_snapshot(context, as_of)
        try:
            await self._record_attempt(context, as_of, snapshot.rules)
            scope = EvaluationScope(
                context=context,
                as_of=as_of,
                velocity=self.velocity,
                email_blacklisted=snapshot.email_blacklisted,
                ip_blacklisted=snapshot.ip_blacklisted,
            )
            matched, skipped = await self._match(snapshot.rules, scope)
        except VelocityCounterUnavailable as e:
            logger.error(f"Velocity counter unavailable for booking {context.booking_ref}: {e}")
            raise EvaluationUnavailable("Velocity counter unreachable") from e

        assessment = self._build_assessment(context, snapshot, matched, skipped, as_of)
        async with self.session_factory() as db:
            await assessment_store.save_assessment(db, assessment)
        logger.info(
            f"Booking {assessment.booking_ref}: score={assessment.risk_score} level={assessment.risk_level} "
            f"review={assessment.requires_review} block={assessment.auto_block} rules={[r.name for r, _ in matched]}"
        )
        return assessment

    async def evaluate(self, context: BookingContext, timeout: float | None = None) -> AssessmentResponse:
        """
        Score and store one booking, then deliver its flag and alert.

        The timeout bounds everything up to and including the save. Delivery
        runs afterwards under publish_timeout and never fails the call.
        """
        as_of = self.clock()
        try:
            assessment = await asyncio.wait_for(self._assess(context, as_of), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Evaluation of booking {context.booking_ref} exceeded {timeout}s")
            raise EvaluationUnavailable(f"Evaluation timed out after {timeout}s") from e

        if assessment.is_flagged:
            await self._deliver_flags(assessment)
        await self.dispatcher.dispatch(assessment, now=as_of)
        return AssessmentResponse.model_validate(assessment)

    def _build_assessment(self, context, snapshot, matched, skipped, as_of) -> FraudAssessment:
        raw_score = sum(rule.score_contribution for rule, _ in matched)
        score = self.policy.clamp(raw_score)
        level = self.policy.level_for(score)
        blacklist_hit = snapshot.email_blacklisted or snapshot.ip_blacklisted
        auto_block = any(rule.auto_block for rule, _ in matched)
        if blacklist_hit:
            level = RiskLevel.HIGH
            auto_block = True
        requires_review = level != RiskLevel.LOW or any(rule.flag_for_review for rule, _ in matched)
        is_flagged = level == RiskLevel.HIGH and requires_review

        return FraudAssessment(
            booking_ref=context.booking_ref,
            user_ref=context.user_ref,
            risk_score=score,
            risk_level=level.value,
            matched_rules=[
                {
                    "rule_id": str(rule.rule_id),
                    "rule_name": rule.name,
                    "score_contribution": rule.score_contribution,
                    "details": details,
                }
                for rule, details in matched
            ],
            skipped_rules=skipped,
            blacklist_hit=blacklist_hit,
            requires_review=requires_review,
            auto_block=auto_block,
            create_alert=any(rule.create_alert for rule, _ in matched),
            context_snapshot=context.model_dump(mode="json"),
            is_flagged=is_flagged,
            flag_reason=assessment_store.format_flag_reason(score) if is_flagged else None,
            review_status="pending",
            created_at=as_of,
            updated_at=as_of,
        )

    async def _deliver_flags(self, assessment: FraudAssessment) -> None:
        if self.publisher is None:
            return
        for flag in assessment.flags:
            try:
                await asyncio.wait_for(self.publisher.publish_booking_flag(flag_payload(flag)), self.publish_timeout)
                async with self.session_factory() as db:
                    await assessment_store.mark_flag_delivered(db, flag.flag_id)
            except Exception as e:
                # the stored flag stays undelivered and is retried by maintenance
                logger.error(f"Failed to deliver booking flag for {flag.booking_ref}: {e}", exc_info=True)

    async def evaluate_many(self, contexts: List[BookingContext]) -> List[dict]:
        """Evaluate a batch concurrently, reporting each booking's outcome."""

        async def _one(context: BookingContext) -> dict:
            try:
                result = await self.evaluate(context)
                return {"booking_ref": context.booking_ref, "success": True, "assessment": result}
            except BookingGuardError as e:
                return {"booking_ref": context.booking_ref, "success": False, "error": str(e)}

        return list(await asyncio.gather(*(_one(c) for c in contexts)))


async def evaluate_with_timeout(evaluator: RiskEvaluator, context: BookingContext, timeout: float) -> AssessmentResponse:
    return await evaluator.evaluate(context, timeout=timeout)
