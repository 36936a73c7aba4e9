"""
Data Models Package

This package contains all Pydantic models used in billsplit.
All data flowing through the ledger must conform to these schemas.
"""

from billsplit.models.ledger import (
    DEFAULT_CATEGORIES,
    DEFAULT_PAYMENT_MODES,
    Bill,
    BillDraft,
    Category,
    LedgerMeta,
    PaymentMode,
    Split,
    SplitDraft,
    User,
    ValidationIssue,
    ValidationResult,
)
from billsplit.models.settlement import (
    Settlement,
    SettlementTransaction,
    UserBalance,
)
from billsplit.models.identity import (
    CURRENT_USER_NAME,
    UNKNOWN_USER_NAME,
    DirectoryUser,
    ResolvedIdentity,
    format_display_name,
)
from billsplit.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "DEFAULT_CATEGORIES",
    "DEFAULT_PAYMENT_MODES",
    "Bill",
    "BillDraft",
    "Category",
    "LedgerMeta",
    "PaymentMode",
    "Split",
    "SplitDraft",
    "User",
    "ValidationIssue",
    "ValidationResult",
    # Settlement models
    "Settlement",
    "SettlementTransaction",
    "UserBalance",
    # Identity models
    "CURRENT_USER_NAME",
    "UNKNOWN_USER_NAME",
    "DirectoryUser",
    "ResolvedIdentity",
    "format_display_name",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
