"""Shared fixtures: a small ledger and a bill draft factory."""

from datetime import datetime
from decimal import Decimal

import pytest

from billsplit.balances import BalanceCache, BalanceCalculator
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import BillDraft, SplitDraft


@pytest.fixture
def store():
    """Alice (1), Bob (2) and Carol (3), no bills, balances not computed."""
    ledger = LedgerStore()
    ledger.add_user("Alice", external_id="ext-alice")
    ledger.add_user("Bob", external_id="ext-bob")
    ledger.add_user("Carol")
    return ledger


@pytest.fixture
def calculator():
    return BalanceCalculator(cache=BalanceCache())


@pytest.fixture
def make_draft():
    """make_draft(payer_id, total, {user_id: amount}, **fields) -> BillDraft"""

    def _make(payer_id, total, splits=None, **fields):
        fields.setdefault("description", "Groceries")
        fields.setdefault("occurred_at", datetime(2024, 3, 1, 18, 30))
        return BillDraft(
            payer_id=payer_id,
            total_amount=Decimal(str(total)),
            splits=[
                SplitDraft(user_id=user_id, amount=Decimal(str(amount)))
                for user_id, amount in (splits or {}).items()
            ],
            **fields,
        )

    return _make
