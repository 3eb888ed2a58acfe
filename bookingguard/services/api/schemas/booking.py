# bookingguard/services/api/schemas/booking.py

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from bookingguard.common.errors import MissingContextField

# Fields a booking context can lose to malformed input without rejecting the whole context.
_DROPPABLE_FIELDS = {
    "user_ref",
    "amount",
    "event_date",
    "submitted_at",
    "days_notice",
    "email",
    "ip_address",
    "account_age_days",
    "completed_bookings",
    "cancelled_bookings",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingContext(BaseModel):
    """What the booking subsystem knows about a submission at evaluation time."""

    booking_ref: str = Field(..., min_length=1, max_length=100, examples=["bk_1042"])
    user_ref: Optional[str] = Field(None, max_length=100, description="Null when the booking precedes account linkage")
    amount: Optional[Decimal] = Field(None, ge=0, examples=[60000])
    event_date: Optional[date] = None
    submitted_at: datetime = Field(default_factory=_utcnow)
    days_notice: Optional[int] = Field(None, description="Overrides event_date - submitted_at when given")
    email: Optional[str] = Field(None, max_length=255, examples=["client@example.com"])
    ip_address: Optional[str] = Field(None, max_length=45, examples=["203.0.113.45"])
    account_age_days: Optional[int] = Field(None, ge=0)
    completed_bookings: Optional[int] = Field(None, ge=0)
    cancelled_bookings: Optional[int] = Field(None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    malformed_fields: List[str] = Field(default_factory=list, description="Fields dropped because they failed validation")

    @classmethod
    def from_payload(cls, payload: dict) -> "BookingContext":
        """Build a context, dropping malformed optional fields instead of failing.

        Only an invalid booking_ref (or metadata) rejects the payload.
        """
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            bad = {err["loc"][0] for err in exc.errors() if err["loc"]}
            if not bad or not bad <= _DROPPABLE_FIELDS:
                raise
            cleaned = {k: v for k, v in payload.items() if k not in bad}
            cleaned["malformed_fields"] = sorted(set(payload.get("malformed_fields") or []) | bad)
            return cls.model_validate(cleaned)

    def require(self, field: str):
        if field in self.malformed_fields:
            raise MissingContextField(field, "malformed")
        value = getattr(self, field)
        if value is None:
            raise MissingContextField(field)
        return value

    def resolved_days_notice(self) -> int:
        if self.days_notice is not None:
            return self.days_notice
        if "days_notice" in self.malformed_fields:
            raise MissingContextField("days_notice", "malformed")
        event_date = self.require("event_date")
        submitted = self.require("submitted_at")
        if submitted.tzinfo is not None:
            submitted = submitted.astimezone(timezone.utc)
        return (event_date - submitted.date()).days

    def email_domain(self) -> str:
        email = self.require("email")
        local, sep, domain = email.strip().rpartition("@")
        if not sep or not local or not domain:
            raise MissingContextField("email", "malformed")
        return domain.lower()
