# bookingguard/services/api/schemas/blacklist.py

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class BlacklistKind(str, Enum):
    EMAIL = "email"
    IP = "ip"


class BlacklistEntryCreate(BaseModel):
    value: str = Field(..., min_length=1, max_length=255)
    reason: Optional[str] = None
    added_by: Optional[str] = None
    expires_at: Optional[datetime] = None


class BlacklistExpiryUpdate(BaseModel):
    expires_at: Optional[datetime] = Field(None, description="Null makes the entry permanent")


class BlacklistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: uuid.UUID
    value: str
    reason: Optional[str] = None
    added_by: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
