"""
Core Ledger Models for billsplit

These models define the schemas for everything stored in a ledger:
users, payment modes, categories, bills and their splits.

DESIGN DECISION: Money is always Decimal. A balance is a running sum
of many bills; Decimal keeps a full recalculation exactly equal to the
incrementally maintained value, so cached balances never drift.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# LOOKUP TABLES
# =============================================================================

class User(BaseModel):
    """
    A ledger participant.

    `balance` is a CACHED derived value, never authoritative.
    None means it has not been computed yet for this ledger.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    name: str = Field(
        ...,
        min_length=1,
        description="Display name"
    )
    external_id: Optional[str] = Field(
        default=None,
        description="Opaque identity in the external directory"
    )
    balance: Optional[Decimal] = Field(
        default=None,
        description="Cached net balance (positive = is owed money)"
    )


class PaymentMode(BaseModel):
    """How a bill was paid. No role in balance computation."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)


class Category(BaseModel):
    """What a bill was for. No role in balance computation."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)


DEFAULT_PAYMENT_MODES = [
    "💵 Cash",
    "💳 Credit Card",
    "💳 Debit Card",
    "🏦 Bank Transfer",
    "💻 PayPal",
]

DEFAULT_CATEGORIES = [
    "🍔 Food",
    "🚗 Transport",
    "💡 Utilities",
    "🎬 Entertainment",
    "🛍️ Shopping",
    "⚕️ Healthcare",
    "🔧 Equipment",
]


# =============================================================================
# BILLS AND SPLITS
# =============================================================================

class SplitDraft(BaseModel):
    """One participant's owed amount, as submitted (no ids yet)."""

    user_id: int = Field(..., ge=1)
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Amount this user owes towards the bill"
    )


class BillDraft(BaseModel):
    """
    A bill payload as submitted by a collaborator.

    The pipeline turns a draft into a stored Bill by assigning an id.
    Text fields are NOT whitespace-stripped: the ledger must give back
    exactly what it was handed.
    """

    description: str = Field(
        ...,
        min_length=1,
        description="What the bill was for"
    )
    total_amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount credited to the payer"
    )
    payer_id: int = Field(
        ...,
        ge=1,
        description="User who paid"
    )
    occurred_at: datetime = Field(
        default_factory=datetime.now,
        description="When the expense happened"
    )
    recurrence: str = Field(
        default="",
        description="Free-form repeat rule"
    )
    payment_mode_id: Optional[int] = None
    category_id: Optional[int] = None
    comment: str = ""
    attachment_ref: str = Field(
        default="",
        description="Opaque reference to an attached file"
    )
    splits: list[SplitDraft] = Field(default_factory=list)

    @property
    def split_total(self) -> Decimal:
        return sum((s.amount for s in self.splits), Decimal("0"))


class Bill(BaseModel):
    """
    A stored bill.

    CRITICAL: Bills are immutable. An edit replaces the bill through the
    mutation pipeline (reverse old impact, apply new impact), never by
    patching fields in place.
    """
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    description: str
    total_amount: Decimal = Field(..., gt=0)
    payer_id: int
    occurred_at: datetime
    recurrence: str = ""
    payment_mode_id: Optional[int] = None
    category_id: Optional[int] = None
    comment: str = ""
    attachment_ref: str = ""

    @classmethod
    def from_draft(cls, bill_id: int, draft: BillDraft) -> "Bill":
        return cls(
            id=bill_id,
            **draft.model_dump(exclude={"splits"}),
        )


class Split(BaseModel):
    """One participant's owed amount against a stored bill."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    bill_id: int
    user_id: int
    amount: Decimal = Field(..., ge=0)


class LedgerMeta(BaseModel):
    """Metadata block carried by the document encoding."""

    version: str = "1.0"
    created: datetime = Field(default_factory=utc_now)
    modified: datetime = Field(default_factory=utc_now)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'unknown_user', 'split_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage bill validation.

    Stage 1: Schema validation (required fields, referenced users)
    Stage 2: Semantic validation (sanity checks, split sum)
    """

    request_id: UUID = Field(
        default_factory=uuid4,
        description="ID of the validation request"
    )
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool = Field(
        ...,
        description="Overall result: may this draft reach the pipeline?"
    )

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]
