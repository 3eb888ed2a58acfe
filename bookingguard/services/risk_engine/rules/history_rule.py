# bookingguard/services/risk_engine/rules/history_rule.py
from bookingguard.services.api.schemas import HistoryConditions
from bookingguard.services.risk_engine.rules.base_rule import BaseRule, EvaluationScope


class HistoryRule(BaseRule):
    """Users with enough finished bookings and too many of them cancelled."""

    rule_type = "history"
    conditions: HistoryConditions

    async def evaluate(self, scope: EvaluationScope) -> tuple[bool, dict]:
        completed = scope.context.require("completed_bookings")
        cancelled = scope.context.require("cancelled_bookings")
        total = completed + cancelled
        cancelled_fraction = cancelled / total if total else 0.0
        details = {"total_bookings": total, "cancelled_fraction": round(cancelled_fraction, 4)}
        if total < self.conditions.min_bookings:
            return False, details
        return cancelled_fraction >= self.conditions.cancellation_threshold, details
