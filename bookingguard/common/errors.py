# bookingguard/common/errors.py
"""
Error taxonomy shared by the risk engine, its stores and the HTTP API.
"""


class BookingGuardError(Exception):
    """Base class for every error raised by bookingguard."""


class InvalidRuleDefinition(BookingGuardError):
    """Rule conditions or actions failed validation; the rule is not stored."""

    def __init__(self, message: str, errors: list | None = None):
        super().__init__(message)
        # keep only the JSON-safe part of pydantic error dicts
        self.errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in errors or []
        ]


class EvaluationUnavailable(BookingGuardError):
    """Rule catalog, blacklist or velocity counter could not be reached."""


class VelocityCounterUnavailable(BookingGuardError):
    """The velocity counter backend failed."""


class DuplicateBlacklistEntry(BookingGuardError):
    def __init__(self, kind: str, value: str):
        super().__init__(f"{kind} {value!r} is already blacklisted")
        self.kind = kind
        self.value = value


class InvalidTransition(BookingGuardError):
    def __init__(self, current: str, requested: str, reason: str | None = None):
        message = f"Cannot move assessment from {current!r} to {requested!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.requested = requested


class PersistenceFailure(BookingGuardError):
    """An assessment could not be stored. The booking must be held for manual review."""


class NotFound(BookingGuardError):
    def __init__(self, entity: str, key):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class MissingContextField(BookingGuardError):
    """A rule needs a booking-context field that is absent or malformed."""

    def __init__(self, field: str, reason: str = "missing"):
        super().__init__(f"context field {field!r} is {reason}")
        self.field = field
