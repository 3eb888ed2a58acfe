# bookingguard/models/blacklist_models.py
import uuid

from sqlalchemy import Column, String, Text, Uuid

from bookingguard.models.base import Base, UTCDateTime, utcnow


class EmailBlacklist(Base):
    __tablename__ = "email_blacklist"

    entry_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # stored lower-cased, lookups are case-insensitive
    value = Column(String(255), unique=True, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    added_by = Column(String(100), nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class IPBlacklist(Base):
    __tablename__ = "ip_blacklist"

    entry_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # canonical textual form (ipaddress.ip_address(...).compressed)
    value = Column(String(45), unique=True, nullable=False, index=True)
    reason = Column(Text, nullable=True)
    added_by = Column(String(100), nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
