"""
Audit Logger

DESIGN DECISION: Every bill mutation, balance fallback and settlement
decision is logged. This provides:
1. Traceability of how each balance came to be
2. Debugging capability when a cached balance looks wrong
3. A history the user can review

The audit logger:
- Is async so it composes with the async ledger flows
- Gracefully handles failures (a broken audit store never blocks a mutation)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from billsplit.models.audit import AuditEvent, AuditEventBuilder
from billsplit.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence and user visibility), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_bill_created(
        self,
        bill_id: int,
        description: str,
        amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bill_created(
            bill_id=bill_id,
            description=description,
            amount=amount,
            affected_users=affected_users,
            correlation_id=correlation_id,
        ))

    async def log_bill_updated(
        self,
        bill_id: int,
        old_amount: str,
        new_amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bill_updated(
            bill_id=bill_id,
            old_amount=old_amount,
            new_amount=new_amount,
            affected_users=affected_users,
            correlation_id=correlation_id,
        ))

    async def log_bill_deleted(
        self,
        bill_id: int,
        amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.bill_deleted(
            bill_id=bill_id,
            amount=amount,
            affected_users=affected_users,
            correlation_id=correlation_id,
        ))

    async def log_mutation_aborted(
        self,
        kind: str,
        bill_id: Optional[int],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.mutation_aborted(
            kind=kind,
            bill_id=bill_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_split_sum_mismatch(
        self,
        bill_id: Optional[int],
        total: str,
        split_total: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.split_sum_mismatch(
            bill_id=bill_id,
            total=total,
            split_total=split_total,
            correlation_id=correlation_id,
        ))

    async def log_balances_recalculated(
        self,
        mode: str,
        user_count: int,
        bill_id: Optional[int] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balances_recalculated(
            mode=mode,
            user_count=user_count,
            bill_id=bill_id,
        ))

    async def log_balance_fallback(
        self,
        path: str,
        error_message: str,
        bill_id: Optional[int] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_fallback(
            path=path,
            error_message=error_message,
            bill_id=bill_id,
        ))

    async def log_settlement_generated(
        self,
        transaction_count: int,
        total_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_generated(
            transaction_count=transaction_count,
            total_amount=total_amount,
            correlation_id=correlation_id,
        ))

    async def log_settlement_rejected(
        self,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_rejected(
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_settlement_applied(
        self,
        bill_ids: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.settlement_applied(
            bill_ids=bill_ids,
            correlation_id=correlation_id,
        ))

    async def log_ledger_loaded(self, source: str, bill_count: int, user_count: int) -> None:
        await self.log(AuditEventBuilder.ledger_loaded(
            source=source,
            bill_count=bill_count,
            user_count=user_count,
        ))

    async def log_ledger_saved(self, target: str, revision: int) -> None:
        await self.log(AuditEventBuilder.ledger_saved(target=target, revision=revision))

    async def log_ledger_parse_failed(self, source: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.ledger_parse_failed(
            source=source,
            error_message=error_message,
        ))

    async def log_identity_lookup_failed(self, external_id: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.identity_lookup_failed(
            external_id=external_id,
            error_message=error_message,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., settling up).
    Pass it through all subsequent operations.
    """
    return uuid4()
