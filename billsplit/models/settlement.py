"""
Balance and Settlement Models

A settlement is a TRANSIENT computation result. It is never persisted
as such; accepting a settlement turns each transaction into an ordinary
single-split bill.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class UserBalance(BaseModel):
    """A user's net position: positive = creditor, negative = debtor."""

    user_id: int
    name: str
    balance: Decimal


class SettlementTransaction(BaseModel):
    """One payment of the plan: `from_user` pays `to_user`."""

    from_user_id: int
    to_user_id: int
    amount: Decimal = Field(..., gt=0)
    from_user_name: str
    to_user_name: str


class Settlement(BaseModel):
    """A payment plan that brings every balance back to zero."""

    transactions: list[SettlementTransaction] = Field(default_factory=list)
    total_transactions: int = Field(default=0, ge=0)
    balances_before: list[UserBalance] = Field(
        default_factory=list,
        description="Balances the plan was computed from"
    )
