"""Database models."""
from campus_notifications.models.storage_entry import StorageEntry

__all__ = [
    "StorageEntry",
]
