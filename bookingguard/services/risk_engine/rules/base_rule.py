# bookingguard/services/risk_engine/rules/base_rule.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
import uuid

from bookingguard.services.api.schemas import BookingContext
from bookingguard.services.risk_engine.velocity import VelocityCounter


@dataclass(frozen=True)
class EvaluationScope:
    """Everything a rule may read while one booking is evaluated."""

    context: BookingContext
    as_of: datetime
    velocity: VelocityCounter
    email_blacklisted: bool = False
    ip_blacklisted: bool = False


class BaseRule(ABC):
    rule_type: str = ""

    def __init__(
        self,
        rule_id: uuid.UUID,
        name: str,
        score_contribution: int,
        conditions,
        flag_for_review: bool = False,
        create_alert: bool = False,
        auto_block: bool = False,
        weight: int = 10,
    ):
        self.rule_id = rule_id
        self.name = name
        self.score_contribution = score_contribution
        self.conditions = conditions
        self.flag_for_review = flag_for_review
        self.create_alert = create_alert
        self.auto_block = auto_block
        self.weight = weight  # higher weight = evaluated and listed first

    @abstractmethod
    async def evaluate(self, scope: EvaluationScope) -> tuple[bool, dict]:
        """
        Evaluates the rule against the booking context.
        Returns (is_triggered, rule_details).
        Raises MissingContextField when a field the rule needs is absent.
        """

    def __lt__(self, other):
        return (-self.weight, self.name) < (-other.weight, other.name)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r} +{self.score_contribution}>"
