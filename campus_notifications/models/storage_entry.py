"""Shared storage entry model."""
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.sql import func

from campus_notifications.core.database import Base


class StorageEntry(Base):
    """One key of a shared storage area. `version` increases on every write, even when the value repeats."""
    __tablename__ = "storage_entries"

    key        = Column(String(255), primary_key=True)
    value      = Column(Text, nullable=False)
    version    = Column(Integer, nullable=False, default=1)
    writer_id  = Column(String(64), nullable=False)            # handle that wrote the current value
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
