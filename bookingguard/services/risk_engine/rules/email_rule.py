# bookingguard/services/risk_engine/rules/email_rule.py
from bookingguard.services.api.schemas import EmailConditions
from bookingguard.services.risk_engine.rules.base_rule import BaseRule, EvaluationScope


class EmailRule(BaseRule):
    """Suspicious submitter domain, or a blacklisted submitter address."""

    rule_type = "email"
    conditions: EmailConditions

    async def evaluate(self, scope: EvaluationScope) -> tuple[bool, dict]:
        if scope.email_blacklisted:
            return True, {"email_blacklisted": True}
        domain = scope.context.email_domain()
        if domain in self.conditions.suspicious_domains:
            return True, {"domain": domain}
        return False, {"domain": domain}
