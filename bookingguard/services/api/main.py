# bookingguard/services/api/main.py

import logging
from contextlib import asynccontextmanager

from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from bookingguard.common.config import settings
from bookingguard.common.db import SessionLocal
from bookingguard.common.errors import (
    DuplicateBlacklistEntry,
    EvaluationUnavailable,
    InvalidRuleDefinition,
    InvalidTransition,
    NotFound,
    PersistenceFailure,
)
from bookingguard.common.kafka_utils import create_kafka_producer
from bookingguard.services.api.api.endpoints_v1 import router as v1_router
from bookingguard.services.api.api.health import router as health_router
from bookingguard.services.risk_engine.notifications import KafkaEventPublisher
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator, RiskPolicy
from bookingguard.services.risk_engine.velocity import create_velocity_counter

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def ensure_topics() -> None:
    """Create the Kafka topics this service publishes to, if missing."""
    admin = AIOKafkaAdminClient(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
    try:
        await admin.start()
        existing = await admin.list_topics()
        topics_to_ensure = [
            settings.KAFKA_BOOKING_SUBMISSIONS_TOPIC,
            settings.KAFKA_ASSESSMENTS_TOPIC,
            settings.KAFKA_FRAUD_ALERTS_TOPIC,
            settings.KAFKA_BOOKING_FLAGS_TOPIC,
        ]
        new_topics = [
            NewTopic(name=t, num_partitions=1, replication_factor=1)
            for t in topics_to_ensure if t not in existing
        ]
        if new_topics:
            await admin.create_topics(new_topics=new_topics)
            logger.info(f"Created topics: {[t.name for t in new_topics]}")
    except Exception as e:
        logger.warning(f"Failed to ensure Kafka topics on startup: {e}")
    finally:
        await admin.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles startup and shutdown events for the FastAPI application.
    """
    logger.info("BookingGuard API starting...")
    await ensure_topics()

    producer = create_kafka_producer()
    await producer.start()
    velocity = create_velocity_counter(
        settings.VELOCITY_BACKEND, settings.REDIS_URL, settings.VELOCITY_RETENTION_HOURS
    )
    app.state.kafka_producer = producer
    app.state.evaluator = RiskEvaluator(
        SessionLocal,
        velocity,
        publisher=KafkaEventPublisher(producer),
        policy=RiskPolicy.from_settings(settings),
        alert_retention_days=settings.ALERT_RETENTION_DAYS,
        publish_timeout=settings.PUBLISH_TIMEOUT_SECONDS,
    )

    yield  # Application runs here

    logger.info("BookingGuard API shutting down...")
    await velocity.close()
    await producer.stop()


app = FastAPI(
    title="BookingGuard Risk API",
    version="1.0.0",
    description="Fraud risk assessment for booking submissions, with rule, blacklist, review and alert administration.",
    lifespan=lifespan,
)


@app.exception_handler(InvalidRuleDefinition)
async def invalid_rule_handler(request: Request, exc: InvalidRuleDefinition):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(DuplicateBlacklistEntry)
async def duplicate_entry_handler(request: Request, exc: DuplicateBlacklistEntry):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(EvaluationUnavailable)
@app.exception_handler(PersistenceFailure)
async def unassessed_handler(request: Request, exc: Exception):
    # Callers must hold the booking for manual review, never auto-approve it.
    logger.error(f"Booking left unassessed: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "assessed": False, "requires_review": True},
    )


app.include_router(health_router, prefix="/health", tags=["Health"])
app.include_router(v1_router, prefix="/api/v1", tags=["API v1"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bookingguard.services.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
    )
