# bookingguard/services/risk_engine/maintenance.py
"""
Housekeeping: purge expired alerts and blacklist entries, compact velocity
counters, and redeliver booking flags the booking subsystem never received.

Run periodically, e.g. `python -m bookingguard.services.risk_engine.maintenance`.
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.config import settings
from bookingguard.common.db import SessionLocal, init_models
from bookingguard.common.kafka_utils import get_kafka_producer
from bookingguard.models.base import utcnow
from bookingguard.services.risk_engine import assessment_store, blacklist, rule_catalog
from bookingguard.services.risk_engine.alerts import purge_expired_alerts
from bookingguard.services.risk_engine.notifications import EventPublisher, KafkaEventPublisher, flag_payload
from bookingguard.services.risk_engine.velocity import VelocityCounter, create_velocity_counter

logger = logging.getLogger(__name__)


async def cleanup_fraud_data(db: AsyncSession, velocity: VelocityCounter | None = None, now: datetime | None = None) -> dict:
    now = now or utcnow()
    cleaned = {
        "alerts": await purge_expired_alerts(db, now),
        "blacklist_entries": await blacklist.purge_expired(db, now),
        "velocity_events": await velocity.compact(now) if velocity is not None else 0,
    }
    logger.info(f"Fraud data cleanup: {cleaned}")
    return cleaned


async def redeliver_booking_flags(db: AsyncSession, publisher: EventPublisher, limit: int = 100) -> int:
    delivered = 0
    for flag in await assessment_store.get_undelivered_flags(db, limit=limit):
        try:
            await publisher.publish_booking_flag(flag_payload(flag))
        except Exception as e:
            logger.error(f"Redelivery of booking flag {flag.flag_id} failed: {e}")
            continue
        await assessment_store.mark_flag_delivered(db, flag.flag_id)
        delivered += 1
    if delivered:
        logger.info(f"Redelivered {delivered} booking flags")
    return delivered


async def _run(args) -> None:
    if args.create_tables:
        await init_models()
    async with SessionLocal() as db:
        if args.seed_rules:
            await rule_catalog.seed_default_rules(db)
        velocity = create_velocity_counter(
            settings.VELOCITY_BACKEND, settings.REDIS_URL, settings.VELOCITY_RETENTION_HOURS
        )
        try:
            await cleanup_fraud_data(db, velocity)
        finally:
            await velocity.close()
        if args.redeliver_flags:
            async with get_kafka_producer() as producer:
                await redeliver_booking_flags(db, KafkaEventPublisher(producer))


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="BookingGuard fraud data maintenance")
    p.add_argument("--create-tables", action="store_true", help="Create missing tables first (development)")
    p.add_argument("--seed-rules", action="store_true", help="Insert or refresh the default fraud rules")
    p.add_argument("--redeliver-flags", action="store_true", help="Republish undelivered booking flags to Kafka")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(stream=sys.stdout, level=logging.INFO,
                        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
