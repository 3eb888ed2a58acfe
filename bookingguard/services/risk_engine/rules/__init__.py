# bookingguard/services/risk_engine/rules/__init__.py
from pydantic import ValidationError

from bookingguard.common.errors import InvalidRuleDefinition
from bookingguard.models import FraudRule
from bookingguard.services.api.schemas import CONDITION_MODELS
from .base_rule import BaseRule, EvaluationScope
from .pattern_rule import PatternRule
from .email_rule import EmailRule
from .velocity_rule import VelocityRule
from .history_rule import HistoryRule

RULE_CLASSES = {
    "pattern": PatternRule,
    "email": EmailRule,
    "velocity": VelocityRule,
    "history": HistoryRule,
}


def compile_rule(row: FraudRule) -> BaseRule:
    """Turn a catalog row into an immutable, typed rule object."""
    rule_class = RULE_CLASSES.get(row.rule_type)
    if rule_class is None:
        raise InvalidRuleDefinition(f"Rule {row.name!r} has unknown rule_type {row.rule_type!r}")
    try:
        conditions = CONDITION_MODELS[row.rule_type].model_validate(row.conditions or {})
    except ValidationError as e:
        raise InvalidRuleDefinition(f"Rule {row.name!r} has malformed conditions", e.errors()) from e
    return rule_class(
        rule_id=row.rule_id,
        name=row.name,
        score_contribution=row.score_contribution,
        conditions=conditions,
        flag_for_review=row.flag_for_review,
        create_alert=row.create_alert,
        auto_block=row.auto_block,
        weight=row.weight,
    )


__all__ = [
    "BaseRule",
    "EvaluationScope",
    "PatternRule",
    "EmailRule",
    "VelocityRule",
    "HistoryRule",
    "RULE_CLASSES",
    "compile_rule",
]
