"""Tests for the tabular and document ledger encodings."""

import json
from datetime import datetime
from decimal import Decimal

import pytest

from billsplit.balances import BalanceCalculator
from billsplit.ledger.codecs import (
    DocumentCodec,
    LedgerParseError,
    TabularCodec,
    codec_for,
)
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import BillDraft, SplitDraft


TRICKY_DESCRIPTION = 'Dinner, "fancy"\nsecond line'


@pytest.fixture
def ledger():
    """A ledger exercising every field, including awkward text."""
    store = LedgerStore()
    store.ensure_defaults("Alice", "ext-alice")
    store.add_user("Bob, Jr.", external_id="ext-bob")
    store.add_user("Carol")
    store.insert_bill(BillDraft(
        description=TRICKY_DESCRIPTION,
        total_amount=Decimal("90.00"),
        payer_id=1,
        occurred_at=datetime(2024, 2, 14, 20, 15),
        recurrence="monthly",
        payment_mode_id=2,
        category_id=1,
        comment="tip, included",
        attachment_ref="receipts/dinner.jpg",
        splits=[
            SplitDraft(user_id=1, amount=Decimal("30.00")),
            SplitDraft(user_id=2, amount=Decimal("30.00")),
            SplitDraft(user_id=3, amount=Decimal("30.00")),
        ],
    ))
    store.insert_bill(BillDraft(
        description="Taxi",
        total_amount=Decimal("12.50"),
        payer_id=2,
        occurred_at=datetime(2024, 2, 15, 1, 5),
        splits=[SplitDraft(user_id=1, amount=Decimal("12.50"))],
    ))
    store.set_user_balance(1, Decimal("47.50"))
    return store


def assert_same_ledger(a: LedgerStore, b: LedgerStore):
    assert a.get_users() == b.get_users()
    assert a.get_payment_modes() == b.get_payment_modes()
    assert a.get_categories() == b.get_categories()
    assert a.get_bills() == b.get_bills()
    assert a.get_all_splits() == b.get_all_splits()


class TestTabularCodec:
    """The row-oriented encoding."""

    def test_round_trip(self, ledger):
        """Every field survives encode then decode."""
        codec = TabularCodec()
        decoded = codec.decode(codec.encode(ledger))
        assert_same_ledger(ledger, decoded)
        assert decoded.get_bill(1).description == TRICKY_DESCRIPTION

    def test_layout(self, ledger):
        """Tables appear in canonical order with their headers."""
        text = TabularCodec().encode(ledger)
        markers = [line for line in text.splitlines() if line.startswith("TABLE,")]
        assert markers == [
            "TABLE,users",
            "TABLE,payment_mode",
            "TABLE,category",
            "TABLE,bills",
            "TABLE,bill_splits",
        ]
        assert "id,name,external_id,balance" in text
        assert '"Bob, Jr."' in text

    def test_empty_tables_are_written(self):
        """An empty ledger still has all five tables."""
        text = TabularCodec().encode(LedgerStore())
        assert text.count("TABLE,") == 5
        assert_same_ledger(LedgerStore(), TabularCodec().decode(text))

    def test_uncomputed_balance_is_blank(self, ledger):
        """A missing balance round-trips as None, not zero."""
        decoded = TabularCodec().decode(TabularCodec().encode(ledger))
        assert decoded.get_user(1).balance == Decimal("47.50")
        assert decoded.get_user(2).balance is None

    def test_tolerates_case_and_unknown_tables(self):
        """Table names are case-insensitive and extra tables are ignored."""
        text = (
            "TABLE,USERS\n"
            "id,name,external_id,balance\n"
            "1,Alice,,\n"
            "\n"
            "TABLE,notes\n"
            "id,text\n"
            "1,hello\n"
        )
        store = TabularCodec().decode(text)
        assert [u.name for u in store.get_users()] == ["Alice"]
        assert store.get_bills() == []

    def test_rejects_bad_rows(self):
        """Unparseable values raise LedgerParseError."""
        text = "TABLE,users\nid,name,external_id,balance\nnot-a-number,Alice,,\n"
        with pytest.raises(LedgerParseError):
            TabularCodec().decode(text)

    def test_rejects_data_before_table(self):
        """Rows must belong to a table."""
        with pytest.raises(LedgerParseError):
            TabularCodec().decode("1,Alice\n")

    def test_reads_epoch_millisecond_timestamps(self):
        """Older ledgers stored bill timestamps as epoch milliseconds."""
        text = (
            "TABLE,users\n"
            "id,name,external_id,balance\n"
            "1,Alice,,\n"
            "2,Bob,,\n"
            "\n"
            "TABLE,bills\n"
            "id,description,total_amount,who_paid_id,timestamp,repeat,"
            "payment_mode_id,category_id,comment,file_link\n"
            "1,Lunch,20,1,1700000000000,,,,,\n"
            "\n"
            "TABLE,bill_splits\n"
            "id,bill_id,user_id,amount\n"
            "1,1,2,20\n"
        )
        store = TabularCodec().decode(text)

        assert len(store.get_bills()) == 1
        assert store.get_bill(1).occurred_at == datetime.fromtimestamp(1700000000)
        assert [s.user_id for s in store.get_splits(1)] == [2]

    def test_rewrites_epoch_timestamps_as_iso(self):
        """A re-saved older ledger carries ISO timestamps."""
        text = (
            "TABLE,users\nid,name,external_id,balance\n1,Alice,,\n\n"
            "TABLE,bills\nid,description,total_amount,who_paid_id,timestamp\n"
            "1,Lunch,20,1,1700000000000\n"
        )
        codec = TabularCodec()
        encoded = codec.encode(codec.decode(text))
        assert datetime.fromtimestamp(1700000000).isoformat() in encoded


class TestDocumentCodec:
    """The nested document encoding."""

    def test_round_trip(self, ledger):
        """Every field survives encode then decode."""
        codec = DocumentCodec()
        decoded = codec.decode(codec.encode(ledger))
        assert_same_ledger(ledger, decoded)
        assert decoded.meta.version == ledger.meta.version

    def test_structure(self, ledger):
        """Entities are keyed by id and bills embed their splits."""
        document = json.loads(DocumentCodec().encode(ledger))
        assert set(document) == {"meta", "data"}
        assert set(document["data"]) == {"users", "payment_modes", "categories", "bills"}

        bill = document["data"]["bills"]["1"]
        assert bill["who_paid_id"] == 1
        assert bill["total_amount"] == "90.00"
        assert set(bill["splits"]) == {"1", "2", "3"}

    def test_accepts_numeric_amounts(self):
        """Amounts written as JSON numbers are read as decimals."""
        content = json.dumps({
            "meta": {"version": "1.0"},
            "data": {
                "users": {"1": {"name": "Alice", "balance": 0}, "2": {"name": "Bob"}},
                "bills": {
                    "5": {
                        "description": "Snacks",
                        "total_amount": 7.5,
                        "who_paid_id": 1,
                        "timestamp": "2024-01-01T09:00:00",
                        "splits": {"9": {"user_id": 2, "amount": 7.5}},
                    }
                },
            },
        })
        store = DocumentCodec().decode(content)
        assert store.get_bill(5).total_amount == Decimal("7.5")
        assert store.get_splits(5)[0].id == 9
        assert store.get_user(2).balance is None

    def test_reads_epoch_millisecond_timestamps(self):
        """Numeric bill timestamps are epoch milliseconds."""
        content = json.dumps({
            "data": {
                "users": {"1": {"name": "Alice"}},
                "bills": {
                    "1": {
                        "description": "Lunch",
                        "total_amount": "20",
                        "who_paid_id": 1,
                        "timestamp": 1700000000000,
                    }
                },
            },
        })
        store = DocumentCodec().decode(content)
        assert store.get_bill(1).occurred_at == datetime.fromtimestamp(1700000000)

    def test_split_keys_numbered_per_bill(self):
        """Bills that each number their splits from 1 keep their own splits."""
        content = json.dumps({
            "data": {
                "users": {
                    "1": {"name": "Alice"},
                    "2": {"name": "Bob"},
                    "3": {"name": "Carol"},
                },
                "bills": {
                    "1": {
                        "description": "Lunch",
                        "total_amount": "30",
                        "who_paid_id": 1,
                        "timestamp": 1700000000000,
                        "splits": {"1": {"user_id": 2, "amount": "30"}},
                    },
                    "2": {
                        "description": "Taxi",
                        "total_amount": "40",
                        "who_paid_id": 1,
                        "timestamp": 1700000100000,
                        "splits": {"1": {"user_id": 3, "amount": "40"}},
                    },
                },
            },
        })
        store = DocumentCodec().decode(content)

        assert [(s.bill_id, s.user_id) for s in store.get_splits(1)] == [(1, 2)]
        assert [(s.bill_id, s.user_id) for s in store.get_splits(2)] == [(2, 3)]
        assert len(store.get_all_splits()) == 2
        assert len({s.id for s in store.get_all_splits()}) == 2

        balances = {
            b.user_id: b.balance
            for b in BalanceCalculator.calculate_full(
                store.get_bills(), store.get_all_splits(), store.get_users()
            )
        }
        assert balances == {1: Decimal("70"), 2: Decimal("-30"), 3: Decimal("-40")}

    def test_rejects_malformed_json(self):
        """Broken documents raise LedgerParseError."""
        with pytest.raises(LedgerParseError):
            DocumentCodec().decode("{not json")


class TestCodecFor:
    """Picking an encoding."""

    def test_by_name_and_suffix(self):
        """Names and file suffixes both select a codec."""
        assert isinstance(codec_for("pson"), DocumentCodec)
        assert isinstance(codec_for("trip.PSON"), DocumentCodec)
        assert isinstance(codec_for("/tmp/trip.pcsv"), TabularCodec)

    def test_default(self):
        """Unknown suffixes fall back to the default."""
        assert isinstance(codec_for("trip.txt"), TabularCodec)
        assert isinstance(codec_for("trip.txt", default="pson"), DocumentCodec)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
