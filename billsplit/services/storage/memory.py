"""In-memory storage backends, used by tests and throwaway sessions."""

from typing import Optional
from uuid import UUID

from billsplit.ledger.codecs import CODECS
from billsplit.ledger.store import LedgerStore
from billsplit.models.audit import AuditEvent
from billsplit.models.ledger import utc_now
from billsplit.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Keeps the ENCODED ledger text, not the store object, so every load
    goes through the codec exactly like a file would.
    """

    def __init__(self, content: Optional[str] = None, encoding: str = "pson"):
        self.codec = CODECS[encoding]
        self.content = content
        self.save_count = 0

    @property
    def source(self) -> str:
        return f"memory:{self.codec.name}"

    async def load(self) -> LedgerStore:
        if self.content is None:
            self.last_load_error = None
            return LedgerStore()
        return self._decode_or_empty(self.codec, self.content)

    async def save(self, store: LedgerStore) -> bool:
        store.meta.modified = utc_now()
        self.content = self.codec.encode(store)
        self.save_count += 1
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return [e for e in self.events if e.correlation_id == correlation_id]

    async def get_events_by_entity(self, entity_type: str, entity_id: int) -> list[AuditEvent]:
        return [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self.events))[:limit]
