# bookingguard/services/risk_engine/rules/pattern_rule.py
from bookingguard.services.api.schemas import PatternConditions
from bookingguard.services.risk_engine.rules.base_rule import BaseRule, EvaluationScope


class PatternRule(BaseRule):
    """High amount and/or short notice. Only the thresholds present are checked."""

    rule_type = "pattern"
    conditions: PatternConditions

    async def evaluate(self, scope: EvaluationScope) -> tuple[bool, dict]:
        details = {}
        if self.conditions.min_amount is not None:
            amount = scope.context.require("amount")
            details["amount"] = str(amount)
            if amount < self.conditions.min_amount:
                return False, details
        if self.conditions.max_days_notice is not None:
            days_notice = scope.context.resolved_days_notice()
            details["days_notice"] = days_notice
            if days_notice > self.conditions.max_days_notice:
                return False, details
        return True, details
