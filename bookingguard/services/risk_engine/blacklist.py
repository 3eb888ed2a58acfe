# bookingguard/services/risk_engine/blacklist.py
"""
Email and IP blacklists. An entry counts only while `expires_at` is null or in
the future; expired entries stay in place until `purge_expired` runs.
"""
import logging
from datetime import datetime
from typing import List

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.errors import DuplicateBlacklistEntry, NotFound
from bookingguard.models import EmailBlacklist, IPBlacklist
from bookingguard.models.base import utcnow
from bookingguard.services.api.schemas import BlacklistKind
from bookingguard.services.risk_engine.velocity import normalise_ip

logger = logging.getLogger(__name__)

_MODELS = {
    BlacklistKind.EMAIL: EmailBlacklist,
    BlacklistKind.IP: IPBlacklist,
}


def normalise(kind: BlacklistKind, value: str) -> str:
    if kind == BlacklistKind.EMAIL:
        return value.strip().lower()
    return normalise_ip(value)


def _active(model, now: datetime):
    return or_(model.expires_at.is_(None), model.expires_at > now)


async def get_entry(db: AsyncSession, kind: BlacklistKind, value: str):
    model = _MODELS[kind]
    result = await db.execute(select(model).where(model.value == normalise(kind, value)))
    return result.scalar_one_or_none()


async def is_blacklisted(db: AsyncSession, kind: BlacklistKind, value: str | None, now: datetime | None = None) -> bool:
    if not value:
        return False
    model = _MODELS[kind]
    now = now or utcnow()
    result = await db.execute(
        select(model.entry_id)
        .where(model.value == normalise(kind, value), _active(model, now))
        .limit(1)
    )
    return result.first() is not None


async def add_entry(
    db: AsyncSession,
    kind: BlacklistKind,
    value: str,
    reason: str | None = None,
    added_by: str | None = None,
    expires_at: datetime | None = None,
):
    """Add a new entry. An existing value is never touched, use update_expiry for that."""
    normalised = normalise(kind, value)
    if await get_entry(db, kind, normalised) is not None:
        raise DuplicateBlacklistEntry(kind.value, normalised)

    entry = _MODELS[kind](value=normalised, reason=reason, added_by=added_by, expires_at=expires_at)
    db.add(entry)
    try:
        await db.commit()
    except IntegrityError as e:
        # lost a race with a concurrent add of the same value
        await db.rollback()
        raise DuplicateBlacklistEntry(kind.value, normalised) from e
    await db.refresh(entry)
    logger.info(f"Blacklisted {kind.value} {normalised} (expires_at={expires_at})")
    return entry


async def update_expiry(db: AsyncSession, kind: BlacklistKind, value: str, expires_at: datetime | None):
    entry = await get_entry(db, kind, value)
    if entry is None:
        raise NotFound(f"{kind.value} blacklist entry", value)
    entry.expires_at = expires_at
    await db.commit()
    await db.refresh(entry)
    return entry


async def remove_entry(db: AsyncSession, kind: BlacklistKind, value: str) -> None:
    entry = await get_entry(db, kind, value)
    if entry is None:
        raise NotFound(f"{kind.value} blacklist entry", value)
    await db.delete(entry)
    await db.commit()
    logger.info(f"Removed {kind.value} {entry.value} from blacklist")


async def list_entries(
    db: AsyncSession,
    kind: BlacklistKind,
    include_expired: bool = True,
    now: datetime | None = None,
    skip: int = 0,
    limit: int = 100,
) -> List:
    model = _MODELS[kind]
    query = select(model).order_by(model.created_at.desc())
    if not include_expired:
        query = query.where(_active(model, now or utcnow()))
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def purge_expired(db: AsyncSession, now: datetime | None = None) -> int:
    now = now or utcnow()
    removed = 0
    for model in _MODELS.values():
        result = await db.execute(
            delete(model).where(model.expires_at.is_not(None), model.expires_at <= now)
        )
        removed += result.rowcount or 0
    await db.commit()
    return removed
