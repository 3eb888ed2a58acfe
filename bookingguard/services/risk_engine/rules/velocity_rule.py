# bookingguard/services/risk_engine/rules/velocity_rule.py
from bookingguard.services.api.schemas import VelocityConditions
from bookingguard.services.risk_engine.rules.base_rule import BaseRule, EvaluationScope
from bookingguard.services.risk_engine.velocity import subject_key

SUBJECT_FIELDS = {
    "email": "email",
    "ip": "ip_address",
    "user": "user_ref",
}


class VelocityRule(BaseRule):
    rule_type = "velocity"
    conditions: VelocityConditions

    async def evaluate(self, scope: EvaluationScope) -> tuple[bool, dict]:
        value = scope.context.require(SUBJECT_FIELDS[self.conditions.subject])
        key = subject_key(self.conditions.subject, value)
        current_count = await scope.velocity.count(key, self.conditions.window_hours, scope.as_of)
        # current_count includes the attempt being evaluated, so the rule fires on
        # the first attempt after max_attempts earlier ones inside the window.
        previous_attempts = current_count - 1
        is_triggered = previous_attempts >= self.conditions.max_attempts
        return is_triggered, {
            "subject": self.conditions.subject,
            "previous_attempts": previous_attempts,
            "max_attempts": self.conditions.max_attempts,
            "window_hours": self.conditions.window_hours,
        }
