"""Services package."""

from billsplit.services.identity import (
    DirectoryError,
    IdentityCache,
    IdentityDirectory,
    IdentityResolver,
)
from billsplit.services.storage import (
    AuditStorageInterface,
    FileLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Identity services
    "DirectoryError",
    "IdentityCache",
    "IdentityDirectory",
    "IdentityResolver",
    # Storage services
    "AuditStorageInterface",
    "FileLedgerStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
]
