"""
Abstract Storage Interfaces

DESIGN DECISION: The ledger is loaded whole and saved whole. The store
itself is the working copy; storage only moves it in and out of an
encoding. This allows us to:
1. Keep the ledger on disk in either encoding
2. Use in-memory storage for testing
3. Keep business logic decoupled from where the text lives

Audit storage is a separate append-only interface.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

import structlog

from billsplit.ledger.codecs import LedgerCodec, LedgerParseError
from billsplit.ledger.store import LedgerStore
from billsplit.models.audit import AuditEvent


logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger persistence.

    A load that finds unreadable content does not raise: it records the
    problem in `last_load_error` and hands back an empty ledger, which
    the session then seeds with defaults.
    """

    last_load_error: Optional[str] = None

    @property
    @abstractmethod
    def source(self) -> str:
        """Human-readable location of the ledger, for logs."""
        pass

    @abstractmethod
    async def load(self) -> LedgerStore:
        """
        Read the ledger.

        Raises:
            StorageError: If the content could not be read at all
        """
        pass

    @abstractmethod
    async def save(self, store: LedgerStore) -> bool:
        """
        Write the ledger.

        Returns:
            True if saved successfully

        Raises:
            StorageError: If save fails
        """
        pass

    def _decode_or_empty(self, codec: LedgerCodec, content: str) -> LedgerStore:
        self.last_load_error = None
        try:
            return codec.decode(content)
        except LedgerParseError as e:
            self.last_load_error = str(e)
            logger.warning(
                "ledger_parse_failed",
                source=self.source,
                codec=codec.name,
                error=str(e),
            )
            return LedgerStore()


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one user action, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """Events about one entity (e.g. 'bill', 7), oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass
