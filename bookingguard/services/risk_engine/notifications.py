# bookingguard/services/risk_engine/notifications.py
"""
Outbound events for collaborators: alerts for the notification service, booking
flags and assessment results for the booking subsystem.
"""
from abc import ABC, abstractmethod
import logging

from aiokafka import AIOKafkaProducer

from bookingguard.common.config import settings
from bookingguard.models import Alert, BookingFlag

logger = logging.getLogger(__name__)


def alert_payload(alert: Alert) -> dict:
    return {
        "alert_id": str(alert.alert_id),
        "type": alert.alert_type,
        "severity": alert.severity,
        "title": alert.title,
        "message": alert.message,
        "booking_ref": alert.booking_ref,
        "user_ref": alert.user_ref,
        "assessment_id": str(alert.assessment_id) if alert.assessment_id else None,
        "expires_at": alert.expires_at.isoformat() if alert.expires_at else None,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }


def flag_payload(flag: BookingFlag) -> dict:
    return {
        "flag_id": str(flag.flag_id),
        "booking_ref": flag.booking_ref,
        "assessment_id": str(flag.assessment_id),
        "reason": flag.reason,
    }


class EventPublisher(ABC):
    @abstractmethod
    async def publish_alert(self, payload: dict) -> None:
        ...

    @abstractmethod
    async def publish_booking_flag(self, payload: dict) -> None:
        ...

    @abstractmethod
    async def publish_assessment(self, payload: dict) -> None:
        ...


class KafkaEventPublisher(EventPublisher):
    """Publishes to Kafka, keyed by booking so one booking's events stay ordered."""

    def __init__(self, producer: AIOKafkaProducer):
        self.producer = producer

    async def _send(self, topic: str, payload: dict) -> None:
        await self.producer.send_and_wait(topic, value=payload, key=payload.get("booking_ref"))
        logger.debug(f"Published to {topic}: {payload}")

    async def publish_alert(self, payload: dict) -> None:
        await self._send(settings.KAFKA_FRAUD_ALERTS_TOPIC, payload)

    async def publish_booking_flag(self, payload: dict) -> None:
        await self._send(settings.KAFKA_BOOKING_FLAGS_TOPIC, payload)

    async def publish_assessment(self, payload: dict) -> None:
        await self._send(settings.KAFKA_ASSESSMENTS_TOPIC, payload)
