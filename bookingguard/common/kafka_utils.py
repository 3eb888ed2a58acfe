# bookingguard/common/kafka_utils.py
import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator

from aiokafka import AIOKafkaProducer, AIOKafkaConsumer

from bookingguard.common.config import settings

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_key(k):
    if k is None:
        return None
    if isinstance(k, (bytes, bytearray)):
        return bytes(k)
    return str(k).encode("utf-8")


def encode_value(v):
    if v is None:
        return None
    # bytes already encoded
    if isinstance(v, (bytes, bytearray)):
        return bytes(v)
    return json.dumps(v, default=_json_default).encode("utf-8")


def create_kafka_producer(bootstrap_servers: str | None = None) -> AIOKafkaProducer:
    # Callers pass dicts (UUID/Decimal/datetime allowed) and plain string keys.
    return AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers or settings.KAFKA_BOOTSTRAP_SERVERS,
        key_serializer=encode_key,
        value_serializer=encode_value,
    )


@asynccontextmanager
async def get_kafka_producer() -> AsyncGenerator[AIOKafkaProducer, None]:
    producer = create_kafka_producer()
    await producer.start()
    try:
        yield producer
    finally:
        await producer.stop()


@asynccontextmanager
async def get_kafka_consumer(
    topic: str,
    group_id: str,
    auto_offset_reset: str = "earliest",
    attempts: int = 5,
    retry_delay: float = 5.0,
) -> AsyncGenerator[AIOKafkaConsumer, None]:
    # Retry loop in case Kafka is not ready
    consumer = None
    for i in range(attempts):
        try:
            consumer = AIOKafkaConsumer(
                topic,
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                group_id=group_id,
                auto_offset_reset=auto_offset_reset,
                enable_auto_commit=False,  # commit after successful processing
            )
            await consumer.start()
            logger.info(f"Kafka consumer started for topic={topic} group_id={group_id} bootstrap={settings.KAFKA_BOOTSTRAP_SERVERS}")
            break
        except Exception as e:
            if i < attempts - 1:
                logger.warning(f"Kafka not ready ({e}), retrying in {retry_delay}s")
                await asyncio.sleep(retry_delay)
            else:
                raise

    try:
        yield consumer
    finally:
        if consumer is not None:
            await consumer.stop()
