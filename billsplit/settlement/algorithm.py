"""
Settlement Algorithm

Turns a set of balances into a short list of peer-to-peer payments
that brings every balance back to zero.

DESIGN DECISION: Greedy largest-pair matching.
- Creditors sorted by balance, largest first
- Debtors sorted by balance, most negative first
- Each step pays min(what the creditor is owed, what the debtor owes)
- Whichever side reaches zero is done; the other carries its remainder

Every step retires at least one party, so the plan never has more
transactions than creditors + debtors - 1. It is not guaranteed to be
the global minimum (that problem is NP-hard), but for the group sizes a
shared ledger sees it is usually optimal and always easy to follow.
"""

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog

from billsplit.balances.calculator import get_creditors, get_debtors
from billsplit.config import get_settings
from billsplit.models.ledger import BillDraft, SplitDraft
from billsplit.models.settlement import (
    Settlement,
    SettlementTransaction,
    UserBalance,
)


logger = structlog.get_logger(__name__)

SETTLEMENT_COMMENT = "Auto-generated settlement bill"
NO_SETTLEMENT_SUMMARY = "No settlements needed - all balances are zero"
CENT = Decimal("0.01")


class SettlementRejectedError(Exception):
    """A settlement plan did not bring the balances back to zero."""
    pass


class SettlementAlgorithm:
    """Plans, checks and materializes settlements."""

    def __init__(self, tolerance: Optional[Decimal] = None):
        if tolerance is None:
            tolerance = get_settings().ledger.settlement_tolerance
        self.tolerance = tolerance

    def create_settlement(self, balances: list[UserBalance]) -> Settlement:
        """
        Build the payment plan for a set of balances.

        The input is never mutated; the plan works on copies.
        Balances within tolerance of zero take no part.
        """
        creditors = [b.model_copy() for b in get_creditors(balances)]
        debtors = [b.model_copy() for b in get_debtors(balances)]

        transactions: list[SettlementTransaction] = []
        c = d = 0

        while c < len(creditors) and d < len(debtors):
            creditor = creditors[c]
            debtor = debtors[d]

            if abs(creditor.balance) < self.tolerance:
                c += 1
                continue
            if abs(debtor.balance) < self.tolerance:
                d += 1
                continue

            amount = min(creditor.balance, -debtor.balance)
            transactions.append(SettlementTransaction(
                from_user_id=debtor.user_id,
                to_user_id=creditor.user_id,
                amount=amount,
                from_user_name=debtor.name,
                to_user_name=creditor.name,
            ))

            creditor.balance -= amount
            debtor.balance += amount

            if abs(creditor.balance) < self.tolerance:
                c += 1
            if abs(debtor.balance) < self.tolerance:
                d += 1

        logger.info(
            "settlement_planned",
            transaction_count=len(transactions),
            creditor_count=len(creditors),
            debtor_count=len(debtors),
        )

        return Settlement(
            transactions=transactions,
            total_transactions=len(transactions),
            balances_before=list(balances),
        )

    def validate(self, settlement: Settlement, original_balances: Iterable[UserBalance]) -> bool:
        """
        Replay the plan against the original balances.

        Valid when every resulting balance is within tolerance of zero.
        """
        remaining: dict[int, Decimal] = {
            b.user_id: b.balance for b in original_balances
        }

        for tx in settlement.transactions:
            remaining[tx.from_user_id] = remaining.get(tx.from_user_id, Decimal("0")) + tx.amount
            remaining[tx.to_user_id] = remaining.get(tx.to_user_id, Decimal("0")) - tx.amount

        for user_id, balance in remaining.items():
            if abs(balance) > self.tolerance:
                logger.warning(
                    "settlement_validation_failed",
                    user_id=user_id,
                    remaining_balance=str(balance),
                )
                return False
        return True

    def to_bill_data(
        self,
        settlement: Settlement,
        on: Optional[date] = None,
        at: Optional[time] = None,
    ) -> list[BillDraft]:
        """
        One bill payload per transaction.

        The paying user is the bill's payer and the receiving user holds
        its only split, so applying the bill moves both balances towards
        zero by the transaction amount.
        """
        now = datetime.now()
        occurred_at = datetime.combine(
            on or now.date(),
            at or now.time().replace(second=0, microsecond=0),
        )

        drafts = []
        for tx in settlement.transactions:
            amount = tx.amount.quantize(CENT, rounding=ROUND_HALF_UP)
            drafts.append(BillDraft(
                description=f"Settlement: {tx.from_user_name} → {tx.to_user_name}",
                total_amount=amount,
                payer_id=tx.from_user_id,
                occurred_at=occurred_at,
                comment=SETTLEMENT_COMMENT,
                splits=[SplitDraft(user_id=tx.to_user_id, amount=amount)],
            ))
        return drafts

    @staticmethod
    def total_amount(settlement: Settlement) -> Decimal:
        return sum((tx.amount for tx in settlement.transactions), Decimal("0"))

    def summary(self, settlement: Settlement) -> str:
        count = len(settlement.transactions)
        if count == 0:
            return NO_SETTLEMENT_SUMMARY
        total = self.total_amount(settlement).quantize(CENT, rounding=ROUND_HALF_UP)
        plural = "s" if count > 1 else ""
        return f"{count} transaction{plural} needed, total amount: {total}"
