"""Record store backend factory."""

from functools import lru_cache

from engagement.config.settings import get_settings

from .base import RecordStore, Transaction
from .memory import MemoryRecordStore
from .sql import SQLRecordStore


@lru_cache
def get_record_store() -> RecordStore:
    """Get configured record store.

    Returns the backend named by the ENGAGEMENT_STORAGE_BACKEND
    environment variable. Uses LRU cache to ensure singleton pattern.

    Raises:
        ValueError: If unknown storage backend is configured
    """
    settings = get_settings()
    if settings.storage_backend == "memory":
        return MemoryRecordStore()
    if settings.storage_backend == "sql":
        return SQLRecordStore(settings.database_url)
    raise ValueError(
        f"Unknown storage backend: {settings.storage_backend}. "
        f"Supported backends: memory, sql"
    )


__all__ = [
    "RecordStore",
    "Transaction",
    "MemoryRecordStore",
    "SQLRecordStore",
    "get_record_store",
]
