"""
Bill Mutation Pipeline

The only sanctioned way to create, edit or remove a bill. Every store
write is paired with its balance side effect so the cached balances on
users never disagree with the bills.

Each mutation walks a small state machine:

    REQUESTED -> BALANCE_REVERSED -> STORE_MUTATED -> BALANCE_APPLIED -> COMMITTED
                 (update/delete)
        \\______________________________ ABORTED _______________________/

DESIGN DECISION: An update is a reversal followed by a re-application.
The old bill's impact is subtracted, the bill and its splits are
replaced, and the new impact is added. There is no field-level diffing.

Failure handling:
1. An incremental balance step fails -> the balance step is finished
   with a full recalculation instead
2. The full recalculation fails too -> the bill, its splits and every
   cached balance are restored and MutationAbortedError is raised
3. The bill to update/delete does not exist -> ABORTED result, no raise
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from billsplit.balances.calculator import BalanceCalculator
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import Bill, BillDraft, Split


logger = structlog.get_logger(__name__)


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MutationState(str, Enum):
    REQUESTED = "requested"
    BALANCE_REVERSED = "balance_reversed"
    STORE_MUTATED = "store_mutated"
    BALANCE_APPLIED = "balance_applied"
    COMMITTED = "committed"
    ABORTED = "aborted"


class MutationResult(BaseModel):
    """Outcome of one pipeline run."""

    kind: MutationKind
    bill_id: Optional[int] = None
    state: MutationState
    applied: bool
    affected_user_ids: list[int] = Field(default_factory=list)
    bill: Optional[Bill] = Field(
        default=None,
        description="The bill as stored after the mutation (None for delete)"
    )
    previous_bill: Optional[Bill] = Field(
        default=None,
        description="The bill as it was before an update or delete"
    )
    fallback_reason: Optional[str] = Field(
        default=None,
        description="Set when the balance step needed a full recalculation"
    )


class MutationAbortedError(Exception):
    """A mutation failed and was rolled back."""

    def __init__(self, kind: MutationKind, bill_id: Optional[int], reason: str):
        self.kind = kind
        self.bill_id = bill_id
        self.reason = reason
        super().__init__(f"{kind.value} of bill {bill_id} aborted: {reason}")


class ConcurrentMutationError(Exception):
    """A mutation was requested while another was still in flight."""
    pass


class BillMutationPipeline:
    """
    Serializes bill mutations against one store.

    Single writer: the pipeline refuses to start a mutation while
    another one has not finished.
    """

    def __init__(self, store: LedgerStore, calculator: BalanceCalculator):
        self._store = store
        self._calculator = calculator
        self._in_flight: Optional[MutationKind] = None

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    async def add_bill(self, draft: BillDraft) -> MutationResult:
        return await self._run(MutationKind.CREATE, None, draft)

    async def update_bill(self, bill_id: int, draft: BillDraft) -> MutationResult:
        return await self._run(MutationKind.UPDATE, bill_id, draft)

    async def delete_bill(self, bill_id: int) -> MutationResult:
        return await self._run(MutationKind.DELETE, bill_id, None)

    async def _run(
        self,
        kind: MutationKind,
        bill_id: Optional[int],
        draft: Optional[BillDraft],
    ) -> MutationResult:
        if self._in_flight is not None:
            raise ConcurrentMutationError(
                f"Cannot {kind.value} a bill while a {self._in_flight.value} is in progress"
            )
        self._in_flight = kind
        try:
            return await self._execute(kind, bill_id, draft)
        finally:
            self._in_flight = None

    async def _execute(
        self,
        kind: MutationKind,
        bill_id: Optional[int],
        draft: Optional[BillDraft],
    ) -> MutationResult:
        store = self._store
        calculator = self._calculator

        previous: Optional[tuple[Bill, list[Split]]] = None
        if kind != MutationKind.CREATE:
            previous = store.get_bill_with_splits(bill_id)
            if previous is None:
                logger.warning("bill_not_found", bill_id=bill_id, operation=kind.value)
                return MutationResult(
                    kind=kind,
                    bill_id=bill_id,
                    state=MutationState.ABORTED,
                    applied=False,
                )

        await self._ensure_balances()
        snapshot = {user.id: user.balance for user in store.get_users()}

        state = MutationState.REQUESTED
        current: Optional[tuple[Bill, list[Split]]] = None
        fallback: Optional[Exception] = None

        try:
            if previous is not None:
                try:
                    calculator.apply_impact(store, calculator.bill_impact(*previous), sign=-1)
                except Exception as e:
                    fallback = e
                state = MutationState.BALANCE_REVERSED

            if kind == MutationKind.CREATE:
                current = store.insert_bill(draft)
                bill_id = current[0].id
            elif kind == MutationKind.UPDATE:
                current = store.replace_bill(bill_id, draft)
            else:
                store.remove_bill(bill_id)
            state = MutationState.STORE_MUTATED

            if current is not None and fallback is None:
                try:
                    calculator.apply_impact(store, calculator.bill_impact(*current), sign=1)
                except Exception as e:
                    fallback = e

            if fallback is not None:
                logger.warning(
                    "incremental_balance_failed",
                    bill_id=bill_id,
                    operation=kind.value,
                    error=str(fallback),
                )
                calculator.last_error = None
                await calculator.force_recalculate(store)
                if calculator.last_error is not None:
                    raise RuntimeError(calculator.last_error)
            state = MutationState.BALANCE_APPLIED
        except Exception as e:
            self._rollback(state, bill_id, previous, snapshot)
            logger.error(
                "mutation_aborted",
                bill_id=bill_id,
                operation=kind.value,
                failed_after=state.value,
                error=str(e),
            )
            raise MutationAbortedError(kind, bill_id, str(e)) from e

        affected = set()
        if previous is not None:
            affected |= self._parties(*previous)
        if current is not None:
            affected |= self._parties(*current)

        logger.info(
            "bill_mutation_committed",
            bill_id=bill_id,
            operation=kind.value,
            affected_users=sorted(affected),
            fallback=fallback is not None,
        )

        return MutationResult(
            kind=kind,
            bill_id=bill_id,
            state=MutationState.COMMITTED,
            applied=True,
            affected_user_ids=sorted(affected),
            bill=current[0] if current else None,
            previous_bill=previous[0] if previous else None,
            fallback_reason=str(fallback) if fallback is not None else None,
        )

    async def _ensure_balances(self) -> None:
        """Incremental updates need a known base for every user."""
        if self._store.get_users() and not self._store.has_cached_balances():
            await self._calculator.calculate(self._store)

    def _rollback(
        self,
        state: MutationState,
        bill_id: Optional[int],
        previous: Optional[tuple[Bill, list[Split]]],
        snapshot: dict,
    ) -> None:
        if state in (MutationState.STORE_MUTATED, MutationState.BALANCE_APPLIED) and bill_id is not None:
            self._store.restore_bill(bill_id, previous)
        self._store.save_balances(snapshot)
        self._calculator.invalidate()

    @staticmethod
    def _parties(bill: Bill, splits: list[Split]) -> set[int]:
        return {bill.payer_id} | {split.user_id for split in splits}
