# bookingguard/services/risk_engine/main.py

import asyncio
import json
from contextlib import asynccontextmanager
import logging

from bookingguard.common.config import settings
from bookingguard.common.db import SessionLocal
from bookingguard.common.kafka_utils import create_kafka_producer, get_kafka_consumer
from bookingguard.services.risk_engine.consumer_logic import process_booking_message
from bookingguard.services.risk_engine.notifications import KafkaEventPublisher
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator, RiskPolicy
from bookingguard.services.risk_engine.velocity import create_velocity_counter

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def consume_messages(evaluator: RiskEvaluator, publisher: KafkaEventPublisher):
    """
    Main loop of the risk engine consumer.
    Reads booking submissions, evaluates them and publishes the results.
    """
    logger.info(f"Starting Kafka consumer for topic '{settings.KAFKA_BOOKING_SUBMISSIONS_TOPIC}' with group_id '{settings.KAFKA_CONSUMER_GROUP_ID}'...")

    try:
        async with get_kafka_consumer(
            settings.KAFKA_BOOKING_SUBMISSIONS_TOPIC,
            settings.KAFKA_CONSUMER_GROUP_ID,
        ) as consumer:
            async for msg in consumer:
                logger.info(f"Consumed message: Topic={msg.topic}, Partition={msg.partition}, Offset={msg.offset}")
                try:
                    message_data = json.loads(msg.value.decode('utf-8'))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    logger.error(f"Error decoding booking message at offset {msg.offset}: {e}")
                    await consumer.commit()
                    continue

                try:
                    result = await process_booking_message(
                        message_data, evaluator, settings.EVALUATION_TIMEOUT_SECONDS
                    )
                    if result:
                        await publisher.publish_assessment(result)

                    # Commit only after the result (or fail-safe decision) is published
                    await consumer.commit()
                    logger.info(f"Successfully processed and committed offset {msg.offset}.")
                except Exception as e:
                    # Offset NOT committed so the message is redelivered.
                    logger.error(f"Failed to process or publish booking at offset {msg.offset}: {e}", exc_info=True)

    except asyncio.CancelledError:
        logger.info("Consumer task cancelled.")
        raise
    except Exception as e:
        logger.critical(f"Consumer encountered an unrecoverable error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Kafka consumer stopped.")


@asynccontextmanager
async def lifespan_consumer():
    """
    Handles startup and shutdown of the risk engine consumer.
    """
    logger.info("Risk engine consumer starting...")
    producer = create_kafka_producer()
    await producer.start()
    velocity = create_velocity_counter(
        settings.VELOCITY_BACKEND, settings.REDIS_URL, settings.VELOCITY_RETENTION_HOURS
    )
    publisher = KafkaEventPublisher(producer)
    evaluator = RiskEvaluator(
        SessionLocal,
        velocity,
        publisher=publisher,
        policy=RiskPolicy.from_settings(settings),
        alert_retention_days=settings.ALERT_RETENTION_DAYS,
        publish_timeout=settings.PUBLISH_TIMEOUT_SECONDS,
    )

    consumer_task = asyncio.create_task(consume_messages(evaluator, publisher))
    try:
        yield consumer_task
    finally:
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass  # Expected when cancelled
        await velocity.close()
        await producer.stop()
        logger.info("Risk engine consumer shutting down gracefully.")


async def _main():
    async with lifespan_consumer() as consumer_task:
        # Runs until interrupted or the consumer dies
        await consumer_task


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Risk engine consumer stopped by user.")
