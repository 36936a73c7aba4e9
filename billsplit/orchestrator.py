"""
Main Orchestrator for billsplit

This module ties together all the components and defines the
end-to-end flows for:
1. Bills (draft -> validate -> pipeline -> audit)
2. Settlement (balances -> plan -> validate -> settlement bills)
3. Session setup (load ledger -> resolve current user -> seed defaults)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No bill reaches the store without passing schema validation
- No bill changes without its balance side effect (pipeline only)
- No settlement plan is used unless it replays to zero
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date, time
from typing import Optional
from uuid import UUID

import structlog

from billsplit.audit import AuditLogger, create_correlation_id
from billsplit.balances import BalanceCalculator
from billsplit.config import get_settings
from billsplit.ledger.pipeline import (
    BillMutationPipeline,
    MutationAbortedError,
    MutationKind,
    MutationResult,
    MutationState,
)
from billsplit.ledger.store import LedgerStore
from billsplit.models.identity import ResolvedIdentity
from billsplit.models.ledger import BillDraft, User, ValidationResult
from billsplit.models.settlement import Settlement, UserBalance
from billsplit.services.identity import IdentityDirectory, IdentityResolver
from billsplit.services.storage import (
    AuditStorageInterface,
    FileLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    StorageError,
)
from billsplit.settlement import SettlementAlgorithm, SettlementRejectedError
from billsplit.validation import BillValidator


logger = structlog.get_logger(__name__)


class BillFlow:
    """
    Orchestrates bill changes.

    Flow:
    1. Validate -> schema errors stop here, warnings are audited
    2. Mutate   -> the pipeline writes the bill and moves balances
    3. Audit    -> the change, plus any balance fallback it needed
    """

    def __init__(
        self,
        store: LedgerStore,
        calculator: BalanceCalculator,
        pipeline: Optional[BillMutationPipeline] = None,
        validator: Optional[BillValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._calculator = calculator
        self._pipeline = pipeline or BillMutationPipeline(store, calculator)
        self._validator = validator or BillValidator(store)
        self._audit_logger = audit_logger

    @property
    def validator(self) -> BillValidator:
        return self._validator

    async def add_bill(
        self,
        draft: BillDraft,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[MutationResult, ValidationResult]:
        """
        Validate and create a bill.

        Returns:
            (mutation_result, validation_result)

        An invalid draft comes back as an ABORTED result; nothing is written.
        """
        correlation_id = correlation_id or create_correlation_id()

        validation = await self._validate(draft, None, correlation_id)
        if not validation.schema_valid:
            return self._rejected(MutationKind.CREATE, None), validation

        result = await self._mutate(
            self._pipeline.add_bill(draft), MutationKind.CREATE, None, correlation_id
        )

        if self._audit_logger:
            await self._audit_logger.log_bill_created(
                bill_id=result.bill_id,
                description=draft.description,
                amount=str(draft.total_amount),
                affected_users=result.affected_user_ids,
                correlation_id=correlation_id,
            )
            await self._audit_split_mismatch(draft, result.bill_id, validation, correlation_id)

        return result, validation

    async def update_bill(
        self,
        bill_id: int,
        draft: BillDraft,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[MutationResult, ValidationResult]:
        """Validate and replace a bill (its splits are regenerated)."""
        correlation_id = correlation_id or create_correlation_id()

        validation = await self._validate(draft, bill_id, correlation_id)
        if not validation.schema_valid:
            return self._rejected(MutationKind.UPDATE, bill_id), validation

        result = await self._mutate(
            self._pipeline.update_bill(bill_id, draft), MutationKind.UPDATE, bill_id, correlation_id
        )

        if self._audit_logger and result.applied:
            await self._audit_logger.log_bill_updated(
                bill_id=bill_id,
                old_amount=str(result.previous_bill.total_amount),
                new_amount=str(draft.total_amount),
                affected_users=result.affected_user_ids,
                correlation_id=correlation_id,
            )
            await self._audit_split_mismatch(draft, bill_id, validation, correlation_id)

        return result, validation

    async def delete_bill(
        self,
        bill_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> MutationResult:
        correlation_id = correlation_id or create_correlation_id()

        result = await self._mutate(
            self._pipeline.delete_bill(bill_id), MutationKind.DELETE, bill_id, correlation_id
        )

        if self._audit_logger and result.applied:
            await self._audit_logger.log_bill_deleted(
                bill_id=bill_id,
                amount=str(result.previous_bill.total_amount),
                affected_users=result.affected_user_ids,
                correlation_id=correlation_id,
            )

        return result

    async def balances(self, force: bool = False) -> list[UserBalance]:
        """Current balances of every user."""
        balances = await self._calculator.calculate(self._store, force=force)
        if not self._audit_logger:
            return balances

        if self._calculator.last_error:
            await self._audit_logger.log_balance_fallback(
                path="calculate",
                error_message=self._calculator.last_error,
            )
        elif force:
            await self._audit_logger.log_balances_recalculated(
                mode="full",
                user_count=len(balances),
            )
        return balances

    async def _validate(
        self,
        draft: BillDraft,
        bill_id: Optional[int],
        correlation_id: UUID,
    ) -> ValidationResult:
        validation = self._validator.validate(draft, bill_id=bill_id)

        if self._audit_logger and not validation.schema_valid:
            issues = [
                {"field": i.field, "type": i.issue_type, "message": i.message}
                for i in validation.issues
            ]
            await self._audit_logger.log_validation_failed(
                issues=issues,
                correlation_id=correlation_id,
            )

        return validation

    async def _mutate(
        self,
        mutation,
        kind: MutationKind,
        bill_id: Optional[int],
        correlation_id: UUID,
    ) -> MutationResult:
        try:
            result = await mutation
        except MutationAbortedError as e:
            if self._audit_logger:
                await self._audit_logger.log_mutation_aborted(
                    kind=kind.value,
                    bill_id=e.bill_id,
                    reason=e.reason,
                    correlation_id=correlation_id,
                )
            raise

        if not self._audit_logger:
            return result

        if not result.applied:
            await self._audit_logger.log_mutation_aborted(
                kind=kind.value,
                bill_id=bill_id,
                reason="bill not found",
                correlation_id=correlation_id,
            )
        elif result.fallback_reason:
            await self._audit_logger.log_balance_fallback(
                path="incremental",
                error_message=result.fallback_reason,
                bill_id=result.bill_id,
            )

        return result

    async def _audit_split_mismatch(
        self,
        draft: BillDraft,
        bill_id: Optional[int],
        validation: ValidationResult,
        correlation_id: UUID,
    ) -> None:
        if any(i.issue_type == "split_mismatch" for i in validation.issues):
            await self._audit_logger.log_split_sum_mismatch(
                bill_id=bill_id,
                total=str(draft.total_amount),
                split_total=str(draft.split_total),
                correlation_id=correlation_id,
            )

    @staticmethod
    def _rejected(kind: MutationKind, bill_id: Optional[int]) -> MutationResult:
        return MutationResult(
            kind=kind,
            bill_id=bill_id,
            state=MutationState.ABORTED,
            applied=False,
        )


class SettlementFlow:
    """
    Orchestrates settling up.

    CRITICAL BOUNDARIES:
    1. A plan is only handed out after it replays the balances to zero
    2. Accepting a plan creates ordinary bills through BillFlow, so
       settlement payments are audited and balanced like any other bill
    """

    def __init__(
        self,
        bill_flow: BillFlow,
        algorithm: Optional[SettlementAlgorithm] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._bill_flow = bill_flow
        self._algorithm = algorithm or SettlementAlgorithm()
        self._audit_logger = audit_logger

    async def generate_settlement(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> Settlement:
        """
        Plan the payments that zero every balance.

        Raises:
            SettlementRejectedError: If the plan does not replay to zero
        """
        correlation_id = correlation_id or create_correlation_id()

        balances = await self._bill_flow.balances()
        settlement = self._algorithm.create_settlement(balances)

        if not self._algorithm.validate(settlement, balances):
            reason = "settlement does not bring every balance to zero"
            if self._audit_logger:
                await self._audit_logger.log_settlement_rejected(
                    reason=reason,
                    correlation_id=correlation_id,
                )
            raise SettlementRejectedError(reason)

        if self._audit_logger:
            await self._audit_logger.log_settlement_generated(
                transaction_count=settlement.total_transactions,
                total_amount=str(self._algorithm.total_amount(settlement)),
                correlation_id=correlation_id,
            )

        return settlement

    async def create_settlement_bills(
        self,
        on: Optional[date] = None,
        at: Optional[time] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[MutationResult]:
        """Generate a plan and record each payment as a bill."""
        correlation_id = correlation_id or create_correlation_id()

        settlement = await self.generate_settlement(correlation_id)
        results = []
        for draft in self._algorithm.to_bill_data(settlement, on=on, at=at):
            result, _ = await self._bill_flow.add_bill(draft, correlation_id)
            results.append(result)

        if self._audit_logger and results:
            await self._audit_logger.log_settlement_applied(
                bill_ids=[r.bill_id for r in results if r.applied],
                correlation_id=correlation_id,
            )

        return results

    def summary(self, settlement: Settlement) -> str:
        return self._algorithm.summary(settlement)


class LedgerSession:
    """Everything needed to work on one opened ledger."""

    def __init__(
        self,
        store: LedgerStore,
        storage: LedgerStorageInterface,
        calculator: BalanceCalculator,
        bill_flow: BillFlow,
        settlement_flow: SettlementFlow,
        identity: IdentityResolver,
        audit_logger: AuditLogger,
        current_user: User,
    ):
        self.store = store
        self.storage = storage
        self.calculator = calculator
        self.bill_flow = bill_flow
        self.settlement_flow = settlement_flow
        self.identity = identity
        self.audit_logger = audit_logger
        self.current_user = current_user

    async def save(self) -> bool:
        try:
            saved = await self.storage.save(self.store)
        except StorageError as e:
            await self.audit_logger.log_error(
                error_type="ledger_save_failed",
                error_message=str(e),
                details={"target": self.storage.source},
            )
            raise
        await self.audit_logger.log_ledger_saved(
            target=self.storage.source,
            revision=self.store.revision,
        )
        return saved


async def create_app_components(
    storage: Optional[LedgerStorageInterface] = None,
    directory: Optional[IdentityDirectory] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerSession:
    """
    Factory function to open a ledger and wire all components.

    Args:
        storage: Where the ledger lives. Defaults to the configured
                 ledger file, or an in-memory ledger if none is set.
        directory: Identity directory. Without one the current user
                   comes from configuration.
        audit_storage: Optional persistent audit trail.

    Returns:
        A ready LedgerSession
    """
    audit_logger = AuditLogger(audit_storage)

    if storage is None:
        file_path = get_settings().ledger.file_path
        if file_path:
            storage = FileLedgerStorage(file_path)
        else:
            logger.warning("ledger_file_not_configured")
            storage = InMemoryLedgerStorage()

    store = await storage.load()
    if storage.last_load_error:
        await audit_logger.log_ledger_parse_failed(
            source=storage.source,
            error_message=storage.last_load_error,
        )
    await audit_logger.log_ledger_loaded(
        source=storage.source,
        bill_count=len(store.get_bills()),
        user_count=len(store.get_users()),
    )

    identity = IdentityResolver(directory, audit_logger=audit_logger)
    me: ResolvedIdentity = await identity.current_user()
    current_user = store.ensure_defaults(me.name, me.external_id)

    calculator = BalanceCalculator()
    bill_flow = BillFlow(
        store=store,
        calculator=calculator,
        audit_logger=audit_logger,
    )
    settlement_flow = SettlementFlow(
        bill_flow=bill_flow,
        audit_logger=audit_logger,
    )

    return LedgerSession(
        store=store,
        storage=storage,
        calculator=calculator,
        bill_flow=bill_flow,
        settlement_flow=settlement_flow,
        identity=identity,
        audit_logger=audit_logger,
        current_user=current_user,
    )
