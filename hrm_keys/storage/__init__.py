# hrm_keys/storage/__init__.py

from .models import (
    AuditEvent,
    BackupEntry,
    KeyRecord,
    KeyStatus,
    KeyStrength,
    SubjectClass,
    UsageStats,
    classify_strength,
)
from .provider import StorageProvider
from .providers.memory_provider import InMemoryStorage
from .providers.sqlite_provider import SQLiteStorage
from hrm_keys.errors import ConfigurationError
import os


def load_storage_provider(config: dict | None = None) -> StorageProvider:
    """
    Factory resolver for selecting the runtime storage backend.

    For now:
        - sqlite (default)
        - memory
    """
    config = config or {}
    provider = config.get("provider") or os.getenv("HRM_KEYS_STORAGE_PROVIDER", "sqlite")

    if provider == "memory":
        return InMemoryStorage()

    if provider == "sqlite":
        db_path = config.get("sqlite_path") or os.getenv("HRM_KEYS_DB_PATH", "db/hrm_keys.db")
        return SQLiteStorage(db_path)

    raise ConfigurationError(f"Unknown storage provider: {provider}")


__all__ = [
    "AuditEvent",
    "BackupEntry",
    "KeyRecord",
    "KeyStatus",
    "KeyStrength",
    "SubjectClass",
    "UsageStats",
    "classify_strength",
    "StorageProvider",
    "InMemoryStorage",
    "SQLiteStorage",
    "load_storage_provider",
]
