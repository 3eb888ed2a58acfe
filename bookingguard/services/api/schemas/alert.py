# bookingguard/services/api/schemas/alert.py

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert_id: uuid.UUID
    alert_type: str
    severity: AlertSeverity
    title: str
    message: str
    booking_ref: Optional[str] = None
    user_ref: Optional[str] = None
    assessment_id: Optional[uuid.UUID] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    read_by: Optional[str] = None
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class AlertReadRequest(BaseModel):
    reader_ref: str = Field(..., min_length=1, max_length=100)


class UnreadAlertCount(BaseModel):
    user_ref: Optional[str] = None
    unread: int
