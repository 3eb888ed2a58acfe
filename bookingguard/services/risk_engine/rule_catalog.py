# bookingguard/services/risk_engine/rule_catalog.py
"""
Rule catalog CRUD. Every write is validated against the typed rule models, so
a rule only becomes active once its conditions are well formed.
"""
import logging
import uuid
from typing import List

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookingguard.common.errors import InvalidRuleDefinition, NotFound
from bookingguard.models import FraudRule
from bookingguard.services.api.schemas import CONDITION_MODELS, RuleUpdate, rule_create_adapter

logger = logging.getLogger(__name__)

DEFAULT_RULES = [
    {
        "name": "High Value Rush Booking",
        "description": "Detect high value bookings with short notice",
        "rule_type": "pattern",
        "conditions": {"min_amount": 50000, "max_days_notice": 7},
        "score_contribution": 30,
        "flag_for_review": True,
        "weight": 30,
    },
    {
        "name": "Suspicious Email Domain",
        "description": "Flag bookings from suspicious email domains",
        "rule_type": "email",
        "conditions": {"suspicious_domains": ["tempmail.com", "10minutemail.com", "guerrillamail.com"]},
        "score_contribution": 40,
        "create_alert": True,
        "weight": 40,
    },
    {
        "name": "Multiple Booking Attempts",
        "description": "Detect multiple booking attempts from same email",
        "rule_type": "velocity",
        "conditions": {"subject": "email", "max_attempts": 3, "time_window_hours": 24},
        "score_contribution": 20,
        "flag_for_review": True,
        "weight": 20,
    },
    {
        "name": "IP Velocity Check",
        "description": "Detect multiple bookings from same IP address",
        "rule_type": "velocity",
        "conditions": {"subject": "ip", "max_bookings": 5, "time_window_hours": 1},
        "score_contribution": 35,
        "create_alert": True,
        "weight": 35,
    },
    {
        "name": "High Cancellation Rate",
        "description": "Flag users with high booking cancellation rate",
        "rule_type": "history",
        "conditions": {"min_bookings": 3, "cancellation_threshold": 0.6},
        "score_contribution": 30,
        "flag_for_review": True,
        "weight": 30,
    },
]


def validate_rule_definition(definition) -> BaseModel:
    """Parse a dict (or an already-typed definition) into its rule-type model."""
    if isinstance(definition, BaseModel):
        definition = definition.model_dump(mode="json")
    try:
        return rule_create_adapter.validate_python(definition)
    except ValidationError as e:
        raise InvalidRuleDefinition("Invalid rule definition", e.errors(include_url=False)) from e


def validate_conditions(rule_type: str, conditions: dict) -> dict:
    model = CONDITION_MODELS.get(rule_type)
    if model is None:
        raise InvalidRuleDefinition(f"Unknown rule_type {rule_type!r}")
    try:
        return model.model_validate(conditions).model_dump(mode="json")
    except ValidationError as e:
        raise InvalidRuleDefinition(f"Invalid {rule_type} conditions", e.errors(include_url=False)) from e


async def get_rule_by_name(db: AsyncSession, name: str) -> FraudRule | None:
    result = await db.execute(select(FraudRule).where(FraudRule.name == name))
    return result.scalar_one_or_none()


async def get_rule(db: AsyncSession, rule_id: uuid.UUID) -> FraudRule:
    rule = await db.get(FraudRule, rule_id)
    if rule is None:
        raise NotFound("Rule", rule_id)
    return rule


async def list_rules(
    db: AsyncSession,
    active_only: bool = False,
    rule_type: str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> List[FraudRule]:
    query = select(FraudRule).order_by(FraudRule.weight.desc(), FraudRule.name)
    if active_only:
        query = query.where(FraudRule.is_active == True)  # noqa: E712
    if rule_type:
        query = query.where(FraudRule.rule_type == rule_type)
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def get_active_rules(db: AsyncSession) -> List[FraudRule]:
    result = await db.execute(
        select(FraudRule)
        .where(FraudRule.is_active == True)  # noqa: E712
        .order_by(FraudRule.weight.desc(), FraudRule.name)
    )
    return list(result.scalars().all())


async def create_rule(db: AsyncSession, definition) -> FraudRule:
    rule_data = validate_rule_definition(definition)
    if await get_rule_by_name(db, rule_data.name):
        raise InvalidRuleDefinition(f"A rule named {rule_data.name!r} already exists")

    values = rule_data.model_dump(mode="json")
    new_rule = FraudRule(**values)
    db.add(new_rule)
    await db.commit()
    await db.refresh(new_rule)
    logger.info(f"Created {new_rule.rule_type} rule {new_rule.name!r} ({new_rule.rule_id})")
    return new_rule


async def update_rule(db: AsyncSession, rule_id: uuid.UUID, changes: RuleUpdate | dict) -> FraudRule:
    if isinstance(changes, dict):
        try:
            changes = RuleUpdate.model_validate(changes)
        except ValidationError as e:
            raise InvalidRuleDefinition("Invalid rule update", e.errors(include_url=False)) from e

    rule = await get_rule(db, rule_id)
    updates = changes.model_dump(exclude_unset=True)

    if "name" in updates and updates["name"] != rule.name:
        if await get_rule_by_name(db, updates["name"]):
            raise InvalidRuleDefinition(f"A rule named {updates['name']!r} already exists")
    if "conditions" in updates:
        if updates["conditions"] is None:
            raise InvalidRuleDefinition("conditions cannot be null")
        updates["conditions"] = validate_conditions(rule.rule_type, updates["conditions"])
    for field in ("score_contribution", "flag_for_review", "create_alert", "auto_block", "weight", "is_active"):
        if field in updates and updates[field] is None:
            raise InvalidRuleDefinition(f"{field} cannot be null")

    for field, value in updates.items():
        setattr(rule, field, value)
    await db.commit()
    await db.refresh(rule)
    logger.info(f"Updated rule {rule.name!r}: {sorted(updates)}")
    return rule


async def delete_rule(db: AsyncSession, rule_id: uuid.UUID) -> None:
    rule = await get_rule(db, rule_id)
    await db.delete(rule)
    await db.commit()
    logger.info(f"Deleted rule {rule.name!r} ({rule_id})")


async def seed_default_rules(db: AsyncSession) -> List[FraudRule]:
    """Insert the stock rules, refreshing definitions of ones that already exist."""
    seeded = []
    for definition in DEFAULT_RULES:
        rule_data = validate_rule_definition(definition)
        values = rule_data.model_dump(mode="json")
        existing = await get_rule_by_name(db, rule_data.name)
        if existing is None:
            existing = FraudRule(**values)
            db.add(existing)
        else:
            for field in ("description", "conditions", "score_contribution", "flag_for_review",
                          "create_alert", "auto_block", "weight"):
                setattr(existing, field, values[field])
        seeded.append(existing)
    await db.commit()
    for rule in seeded:
        await db.refresh(rule)
    logger.info(f"Seeded {len(seeded)} default fraud rules")
    return seeded
