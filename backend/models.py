from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime
from database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class StorageEntry(Base):
    """One serialized collection of the ledger, addressed by its storage key."""
    __tablename__ = "storage_entries"

    key = Column(String, primary_key=True, index=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
