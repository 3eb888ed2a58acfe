# bookingguard/services/risk_engine/consumer_logic.py
import logging

from pydantic import ValidationError

from bookingguard.common.errors import EvaluationUnavailable, PersistenceFailure
from bookingguard.services.api.schemas import BookingContext, UnassessedDecision
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator, evaluate_with_timeout

logger = logging.getLogger(__name__)


async def process_booking_message(message_data: dict, evaluator: RiskEvaluator, timeout: float) -> dict | None:
    """
    Evaluates a single booking submission from Kafka.

    Returns the payload to publish on the assessments topic, or None when the
    message is not a booking submission at all. When the engine cannot produce
    an assessment the payload is a fail-safe "hold for review" decision.
    """
    logger.info(f"Processing booking submission booking_ref={message_data.get('booking_ref')} amount={message_data.get('amount')}")

    try:
        context = BookingContext.from_payload(message_data)
    except ValidationError as e:
        logger.error(f"Invalid booking submission: {e}")
        return None

    try:
        assessment = await evaluate_with_timeout(evaluator, context, timeout)
    except (EvaluationUnavailable, PersistenceFailure) as e:
        logger.error(f"Booking {context.booking_ref} left unassessed, holding for review: {e}")
        return UnassessedDecision(booking_ref=context.booking_ref, error=str(e)).model_dump(mode="json")

    result = assessment.model_dump(mode="json")
    result["assessed"] = True
    return result
