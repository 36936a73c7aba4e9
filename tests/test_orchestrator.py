"""End-to-end tests for the bill and settlement flows."""

from datetime import date, time
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from billsplit.balances import is_settled
from billsplit.ledger.pipeline import MutationState
from billsplit.models.audit import AuditEventType
from billsplit.orchestrator import create_app_components
from billsplit.services.identity import IdentityDirectory
from billsplit.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    StorageError,
)
from billsplit.settlement import SETTLEMENT_COMMENT, SettlementRejectedError


class StaticDirectory(IdentityDirectory):
    """Knows exactly one person: the caller."""

    async def get_me(self):
        return {"id": "ext-dana", "displayName": "Dana"}

    async def get_user(self, external_id):
        return None

    async def list_users(self, query, limit):
        return []


class BrokenStorage(InMemoryLedgerStorage):
    async def save(self, store):
        raise StorageError("disk full")


def event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest_asyncio.fixture
async def session(audit_storage):
    """A fresh in-memory ledger: the current user (1), Bob (2), Carol (3)."""
    session = await create_app_components(
        storage=InMemoryLedgerStorage(),
        directory=StaticDirectory(),
        audit_storage=audit_storage,
    )
    session.store.add_user("Bob")
    session.store.add_user("Carol")
    return session


class TestSessionSetup:
    """Opening a ledger."""

    @pytest.mark.asyncio
    async def test_seeds_current_user_and_defaults(self, session, audit_storage):
        """The directory's current user becomes ledger user 1."""
        assert session.current_user.id == 1
        assert session.current_user.name == "Dana"
        assert session.current_user.external_id == "ext-dana"
        assert session.store.get_payment_modes()
        assert session.store.get_categories()
        assert AuditEventType.LEDGER_LOADED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_reopening_does_not_duplicate_user(self, session):
        """The saved ledger already knows the current user."""
        await session.save()
        reopened = await create_app_components(
            storage=session.storage,
            directory=StaticDirectory(),
        )
        assert reopened.current_user.id == 1
        assert len(reopened.store.get_users()) == 3

    @pytest.mark.asyncio
    async def test_corrupt_ledger_is_audited(self, audit_storage):
        """Unreadable content opens as a fresh ledger, with an audit trail."""
        session = await create_app_components(
            storage=InMemoryLedgerStorage(content="{broken", encoding="pson"),
            audit_storage=audit_storage,
        )
        assert AuditEventType.LEDGER_PARSE_FAILED in event_types(audit_storage)
        assert len(session.store.get_users()) == 1

    @pytest.mark.asyncio
    async def test_without_directory(self):
        """No directory: the current user comes from configuration."""
        session = await create_app_components(storage=InMemoryLedgerStorage())
        assert session.current_user.name


class TestBillFlow:
    """Validate, mutate, audit."""

    @pytest.mark.asyncio
    async def test_add_bill(self, session, audit_storage, make_draft):
        result, validation = await session.bill_flow.add_bill(
            make_draft(1, 90, {1: 30, 2: 30, 3: 30})
        )

        assert validation.is_valid
        assert result.state == MutationState.COMMITTED
        balances = {b.user_id: b.balance for b in await session.bill_flow.balances()}
        assert balances == {1: Decimal("60"), 2: Decimal("-30"), 3: Decimal("-30")}
        assert AuditEventType.BILL_CREATED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_invalid_draft_is_not_written(self, session, audit_storage, make_draft):
        """Schema errors stop the bill before the store."""
        result, validation = await session.bill_flow.add_bill(make_draft(99, 10, {2: 10}))

        assert not validation.schema_valid
        assert not result.applied
        assert result.state == MutationState.ABORTED
        assert session.store.get_bills() == []
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_storage)
        assert AuditEventType.BILL_CREATED not in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_split_mismatch_is_kept_and_audited(self, session, audit_storage, make_draft):
        """A bill whose splits don't add up is stored as given."""
        result, validation = await session.bill_flow.add_bill(make_draft(1, 100, {2: 40}))

        assert result.applied
        assert "split_mismatch" in [w.issue_type for w in validation.warnings]
        assert AuditEventType.SPLIT_SUM_MISMATCH in event_types(audit_storage)
        balances = {b.user_id: b.balance for b in await session.bill_flow.balances()}
        assert balances[1] == Decimal("100")
        assert balances[2] == Decimal("-40")

    @pytest.mark.asyncio
    async def test_update_and_delete(self, session, audit_storage, make_draft):
        created, _ = await session.bill_flow.add_bill(make_draft(1, 20, {2: 20}))
        correlation_id = uuid4()

        updated, _ = await session.bill_flow.update_bill(
            created.bill_id, make_draft(3, 20, {2: 20}), correlation_id
        )
        deleted = await session.bill_flow.delete_bill(created.bill_id, correlation_id)

        assert updated.applied and deleted.applied
        assert is_settled(await session.bill_flow.balances())
        correlated = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in correlated] == [
            AuditEventType.BILL_UPDATED,
            AuditEventType.BILL_DELETED,
        ]

    @pytest.mark.asyncio
    async def test_missing_bill(self, session, audit_storage):
        """Deleting an unknown bill changes nothing but is audited."""
        result = await session.bill_flow.delete_bill(42)

        assert not result.applied
        assert AuditEventType.MUTATION_ABORTED in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_forced_balances_are_audited(self, session, audit_storage):
        await session.bill_flow.balances(force=True)
        assert AuditEventType.BALANCES_RECALCULATED in event_types(audit_storage)


class TestSettlementFlow:
    """Planning and applying settlements."""

    @pytest.mark.asyncio
    async def test_settling_zeroes_every_balance(self, session, audit_storage, make_draft):
        await session.bill_flow.add_bill(make_draft(1, 90, {1: 30, 2: 30, 3: 30}))
        correlation_id = uuid4()

        results = await session.settlement_flow.create_settlement_bills(
            on=date(2024, 3, 2), at=time(9, 0), correlation_id=correlation_id
        )

        assert len(results) == 2
        assert all(r.applied for r in results)
        assert all(r.bill.comment == SETTLEMENT_COMMENT for r in results)
        assert is_settled(await session.bill_flow.balances())

        correlated = [
            e.event_type
            for e in await audit_storage.get_events_by_correlation_id(correlation_id)
        ]
        assert correlated[0] == AuditEventType.SETTLEMENT_GENERATED
        assert correlated[-1] == AuditEventType.SETTLEMENT_APPLIED
        assert correlated.count(AuditEventType.BILL_CREATED) == 2

    @pytest.mark.asyncio
    async def test_nothing_to_settle(self, session, audit_storage):
        settlement = await session.settlement_flow.generate_settlement()

        assert settlement.transactions == []
        assert session.settlement_flow.summary(settlement).startswith("No settlements needed")
        assert await session.settlement_flow.create_settlement_bills() == []
        assert AuditEventType.SETTLEMENT_APPLIED not in event_types(audit_storage)

    @pytest.mark.asyncio
    async def test_rejected_plan(self, session, audit_storage, make_draft, monkeypatch):
        """A plan that fails its replay is never handed out."""
        await session.bill_flow.add_bill(make_draft(1, 50, {2: 50}))
        monkeypatch.setattr(
            session.settlement_flow._algorithm,
            "validate",
            lambda settlement, balances: False,
        )

        with pytest.raises(SettlementRejectedError):
            await session.settlement_flow.create_settlement_bills()

        assert AuditEventType.SETTLEMENT_REJECTED in event_types(audit_storage)
        assert len(session.store.get_bills()) == 1


class TestSave:
    """Writing the session back."""

    @pytest.mark.asyncio
    async def test_save(self, session, audit_storage, make_draft):
        await session.bill_flow.add_bill(make_draft(1, 10, {2: 10}))

        assert await session.save()

        assert session.storage.save_count == 1
        assert AuditEventType.LEDGER_SAVED in event_types(audit_storage)
        reloaded = await session.storage.load()
        assert reloaded.get_bills() == session.store.get_bills()

    @pytest.mark.asyncio
    async def test_save_failure(self, audit_storage):
        session = await create_app_components(
            storage=BrokenStorage(),
            audit_storage=audit_storage,
        )

        with pytest.raises(StorageError):
            await session.save()

        assert AuditEventType.SYSTEM_ERROR in event_types(audit_storage)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
