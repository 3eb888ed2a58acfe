# bookingguard/models/__init__.py
# For convenient imports like `from bookingguard.models import FraudRule`
from .base import Base
from .fraud_models import FraudRule, FraudAssessment, BookingFlag, Alert
from .blacklist_models import EmailBlacklist, IPBlacklist

__all__ = [
    "Base",
    "FraudRule",
    "FraudAssessment",
    "BookingFlag",
    "Alert",
    "EmailBlacklist",
    "IPBlacklist",
]
