# bookingguard/services/api/dependencies.py

from typing import AsyncGenerator

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.config import settings
from bookingguard.common.db import get_db as get_common_db
from bookingguard.services.risk_engine.rule_engine import RiskEvaluator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provides an asynchronous database session."""
    async for session in get_common_db():
        yield session


def get_evaluator(request: Request) -> RiskEvaluator:
    """The long-lived evaluator created at startup (app.state.evaluator)."""
    evaluator = getattr(request.app.state, "evaluator", None)
    if evaluator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Risk engine not initialised")
    return evaluator


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def get_api_key(api_key_header: str = Security(api_key_header)):
    if api_key_header == settings.API_KEY:
        return api_key_header
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Could not validate credentials",
    )
