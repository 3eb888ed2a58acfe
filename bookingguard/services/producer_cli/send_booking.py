# bookingguard/services/producer_cli/send_booking.py

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date, datetime, timedelta, timezone

from bookingguard.common.config import settings
from bookingguard.common.kafka_utils import create_kafka_producer

LOG = logging.getLogger("producer_cli")


def build_test_messages(seed: uuid.UUID | None = None) -> list[dict]:
    """Return sample booking submissions: a clean one, a rush booking from a
    throwaway domain, and a serial canceller.

    If seed is provided, booking refs are deterministic.
    """
    if seed:
        refs = [str(uuid.uuid5(seed, name)) for name in ("b1", "b2", "b3")]
    else:
        refs = [str(uuid.uuid4()) for _ in range(3)]

    now = datetime.now(timezone.utc)
    today = date.today()

    clean = {
        "booking_ref": refs[0],
        "user_ref": "user_1001",
        "amount": "15000.00",
        "event_date": (today + timedelta(days=60)).isoformat(),
        "submitted_at": now.isoformat(),
        "email": "events@acme-corp.com",
        "ip_address": "203.0.113.45",
        "account_age_days": 400,
        "completed_bookings": 4,
        "cancelled_bookings": 0,
    }

    rush_tempmail = {
        "booking_ref": refs[1],
        "user_ref": None,
        "amount": "60000.00",
        "event_date": (today + timedelta(days=3)).isoformat(),
        "submitted_at": now.isoformat(),
        "email": "x@tempmail.com",
        "ip_address": "198.51.100.5",
        "account_age_days": 0,
        "completed_bookings": 0,
        "cancelled_bookings": 0,
    }

    serial_canceller = {
        "booking_ref": refs[2],
        "user_ref": "user_2002",
        "amount": "8000.00",
        "event_date": (today + timedelta(days=30)).isoformat(),
        "submitted_at": now.isoformat(),
        "email": "planner@example.org",
        "ip_address": "192.0.2.50",
        "account_age_days": 90,
        "completed_bookings": 1,
        "cancelled_bookings": 4,
    }

    return [clean, rush_tempmail, serial_canceller]


async def send_messages(bootstrap_servers: str, topic: str, messages: list[dict], interval: float = 1.0):
    producer = create_kafka_producer(bootstrap_servers)
    try:
        LOG.info("Starting producer to %s", bootstrap_servers)
        await producer.start()
    except Exception as e:
        LOG.exception("Failed to start Kafka producer: %s", e)
        raise

    try:
        for msg in messages:
            try:
                LOG.info("Sending booking %s to topic=%s", msg["booking_ref"], topic)
                await producer.send_and_wait(topic, value=msg, key=msg["booking_ref"])
            except Exception:
                LOG.exception("Failed to send message to Kafka")
            await asyncio.sleep(interval)
    finally:
        await producer.stop()


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Send test booking submissions to Kafka (BookingGuard)")
    p.add_argument("--bootstrap", default=None, help="Kafka bootstrap servers (overrides .env)")
    p.add_argument("--topic", default=None, help="Kafka topic to send to (overrides .env)")
    p.add_argument("--count", type=int, default=1, help="How many cycles of the three test bookings to send")
    p.add_argument("--interval", type=float, default=1.0, help="Seconds between messages")
    p.add_argument("--seed", type=str, default=None, help="Seed UUID for deterministic booking refs")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(stream=sys.stdout, level=logging.DEBUG if args.debug else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    bootstrap = args.bootstrap or settings.KAFKA_BOOTSTRAP_SERVERS
    topic = args.topic or settings.KAFKA_BOOKING_SUBMISSIONS_TOPIC

    seed = None
    if args.seed:
        try:
            seed = uuid.UUID(args.seed)
        except ValueError:
            LOG.warning("Invalid seed provided, ignoring")

    messages = []
    for cycle in range(max(1, args.count)):
        # fresh refs per cycle, otherwise every cycle re-submits the same bookings
        cycle_seed = uuid.uuid5(seed, str(cycle)) if seed else None
        messages.extend(build_test_messages(seed=cycle_seed))

    asyncio.run(send_messages(bootstrap, topic, messages, interval=args.interval))


if __name__ == "__main__":
    main()
