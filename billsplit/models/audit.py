"""
Audit Models for billsplit

Every ledger mutation and every balance fallback is recorded.
This provides:
1. Traceability of who changed which bill, and how balances moved
2. Visibility into fallbacks that would otherwise be silent
3. The ability to reconstruct history when a cached balance looks wrong

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Bill mutations
    BILL_CREATED = "bill_created"
    BILL_UPDATED = "bill_updated"
    BILL_DELETED = "bill_deleted"
    MUTATION_ABORTED = "mutation_aborted"

    # Validation
    VALIDATION_FAILED = "validation_failed"
    SPLIT_SUM_MISMATCH = "split_sum_mismatch"

    # Balances
    BALANCES_RECALCULATED = "balances_recalculated"
    BALANCE_FALLBACK = "balance_fallback"

    # Settlement
    SETTLEMENT_GENERATED = "settlement_generated"
    SETTLEMENT_REJECTED = "settlement_rejected"
    SETTLEMENT_APPLIED = "settlement_applied"

    # Persistence
    LEDGER_LOADED = "ledger_loaded"
    LEDGER_SAVED = "ledger_saved"
    LEDGER_PARSE_FAILED = "ledger_parse_failed"

    # System events
    IDENTITY_LOOKUP_FAILED = "identity_lookup_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'bill', 'ledger', 'settlement')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Ledger id of the entity this event relates to"
    )

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all bills of one settlement)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.bill_created(bill_id, description, amount, ...)
        event = AuditEventBuilder.settlement_rejected(reason, correlation_id)
    """

    @staticmethod
    def bill_created(
        bill_id: int,
        description: str,
        amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_CREATED,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill created: {description[:100]} - {amount}",
            details={
                "amount": amount,
                "affected_users": affected_users,
            },
            is_user_action=True,
        )

    @staticmethod
    def bill_updated(
        bill_id: int,
        old_amount: str,
        new_amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_UPDATED,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill {bill_id} updated: {old_amount} -> {new_amount}",
            details={
                "old_amount": old_amount,
                "new_amount": new_amount,
                "affected_users": affected_users,
            },
            is_user_action=True,
        )

    @staticmethod
    def bill_deleted(
        bill_id: int,
        amount: str,
        affected_users: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_DELETED,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill {bill_id} deleted ({amount})",
            details={
                "amount": amount,
                "affected_users": affected_users,
            },
            is_user_action=True,
        )

    @staticmethod
    def mutation_aborted(
        kind: str,
        bill_id: Optional[int],
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MUTATION_ABORTED,
            severity=AuditSeverity.WARNING,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Bill {kind} aborted",
            details={"kind": kind},
            error_message=reason,
        )

    @staticmethod
    def validation_failed(
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="bill",
            correlation_id=correlation_id,
            description=f"Bill validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def split_sum_mismatch(
        bill_id: Optional[int],
        total: str,
        split_total: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPLIT_SUM_MISMATCH,
            severity=AuditSeverity.INFO,
            entity_type="bill",
            entity_id=bill_id,
            correlation_id=correlation_id,
            description=f"Splits sum to {split_total}, bill total is {total}",
            details={
                "total_amount": total,
                "split_total": split_total,
            },
        )

    @staticmethod
    def balances_recalculated(
        mode: str,
        user_count: int,
        bill_id: Optional[int] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_RECALCULATED,
            entity_type="ledger",
            entity_id=bill_id,
            description=f"Balances recalculated ({mode}) for {user_count} users",
            details={
                "mode": mode,
                "user_count": user_count,
            },
        )

    @staticmethod
    def balance_fallback(
        path: str,
        error_message: str,
        bill_id: Optional[int] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_FALLBACK,
            severity=AuditSeverity.WARNING,
            entity_type="ledger",
            entity_id=bill_id,
            description=f"Balance path '{path}' fell back to full recalculation",
            details={"path": path},
            error_message=error_message,
        )

    @staticmethod
    def settlement_generated(
        transaction_count: int,
        total_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_GENERATED,
            entity_type="settlement",
            correlation_id=correlation_id,
            description=f"Settlement generated: {transaction_count} transactions",
            details={
                "transaction_count": transaction_count,
                "total_amount": total_amount,
            },
        )

    @staticmethod
    def settlement_rejected(
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_REJECTED,
            severity=AuditSeverity.ERROR,
            entity_type="settlement",
            correlation_id=correlation_id,
            description="Generated settlement did not zero all balances",
            error_message=reason,
        )

    @staticmethod
    def settlement_applied(
        bill_ids: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_APPLIED,
            entity_type="settlement",
            correlation_id=correlation_id,
            description=f"Settlement applied as {len(bill_ids)} bills",
            details={"bill_ids": bill_ids},
            is_user_action=True,
        )

    @staticmethod
    def ledger_loaded(source: str, bill_count: int, user_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_LOADED,
            entity_type="ledger",
            description=f"Ledger loaded from {source}",
            details={
                "source": source,
                "bill_count": bill_count,
                "user_count": user_count,
            },
        )

    @staticmethod
    def ledger_saved(target: str, revision: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_SAVED,
            entity_type="ledger",
            description=f"Ledger saved to {target}",
            details={
                "target": target,
                "revision": revision,
            },
        )

    @staticmethod
    def ledger_parse_failed(source: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_PARSE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="ledger",
            description=f"Could not parse ledger from {source}; started a fresh one",
            details={"source": source},
            error_message=error_message,
        )

    @staticmethod
    def identity_lookup_failed(
        external_id: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IDENTITY_LOOKUP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="identity",
            description=f"Identity lookup failed for {external_id}",
            details={"external_id": external_id},
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
