"""
Storage Services Package

Abstract interfaces plus file-backed and in-memory implementations.
"""

from billsplit.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from billsplit.services.storage.file_storage import FileLedgerStorage
from billsplit.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "NotFoundError",
    "StorageError",
    # Implementations
    "FileLedgerStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
]
