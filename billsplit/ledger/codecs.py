"""
Ledger Persistence Codecs

Two interchangeable flat encodings of a ledger:

1. TABULAR ("pcsv") - row oriented text. Each table is a `TABLE,<name>`
   line, a header row, CSV data rows, and a blank line. Fields that
   contain a comma, a quote or a newline are quoted, with internal
   quotes doubled.
2. DOCUMENT ("pson") - a nested JSON document with a `meta` block and a
   `data` object keyed by entity type, then by stringified numeric id.
   Bills embed their splits.

Both are lossless for every field of every entity. Table and field
order carry no meaning on read; a canonical order is used on write so
that saved files diff cleanly.
"""

import csv
import io
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import (
    Bill,
    Category,
    LedgerMeta,
    PaymentMode,
    Split,
    User,
)


class LedgerParseError(Exception):
    """Ledger content could not be decoded."""
    pass


class LedgerCodec(ABC):
    """Encode a store to text and back."""

    name: str
    suffix: str

    @abstractmethod
    def encode(self, store: LedgerStore) -> str:
        pass

    @abstractmethod
    def decode(self, content: str) -> LedgerStore:
        """
        Raises:
            LedgerParseError: If the content is malformed
        """
        pass


# =============================================================================
# TABULAR ENCODING
# =============================================================================

USER_COLUMNS = ["id", "name", "external_id", "balance"]
LOOKUP_COLUMNS = ["id", "name"]
BILL_COLUMNS = [
    "id",
    "description",
    "total_amount",
    "who_paid_id",
    "timestamp",
    "repeat",
    "payment_mode_id",
    "category_id",
    "comment",
    "file_link",
]
SPLIT_COLUMNS = ["id", "bill_id", "user_id", "amount"]

TABLE_ORDER = [
    ("users", USER_COLUMNS),
    ("payment_mode", LOOKUP_COLUMNS),
    ("category", LOOKUP_COLUMNS),
    ("bills", BILL_COLUMNS),
    ("bill_splits", SPLIT_COLUMNS),
]

TABLE_MARKER = "TABLE"


def _opt_str(value) -> str:
    return "" if value is None else str(value)


def _opt_int(value: str) -> Optional[int]:
    return int(value) if value.strip() else None


def _opt_decimal(value: str) -> Optional[Decimal]:
    return Decimal(value) if value.strip() else None


def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """
    Bill timestamps are written as ISO-8601. Older ledgers stored epoch
    milliseconds, which are read as local time.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000)
    text = value.strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000)
    return datetime.fromisoformat(text)


class TabularCodec(LedgerCodec):
    """The row-oriented `.pcsv` encoding."""

    name = "pcsv"
    suffix = ".pcsv"

    def encode(self, store: LedgerStore) -> str:
        output = io.StringIO()
        writer = csv.writer(output, lineterminator="\n")

        rows_by_table = {
            "users": [
                [u.id, u.name, _opt_str(u.external_id), _opt_str(u.balance)]
                for u in store.get_users()
            ],
            "payment_mode": [[m.id, m.name] for m in store.get_payment_modes()],
            "category": [[c.id, c.name] for c in store.get_categories()],
            "bills": [self._bill_to_row(b) for b in store.get_bills()],
            "bill_splits": [
                [s.id, s.bill_id, s.user_id, str(s.amount)]
                for s in store.get_all_splits()
            ],
        }

        for table, columns in TABLE_ORDER:
            writer.writerow([TABLE_MARKER, table])
            writer.writerow(columns)
            writer.writerows(rows_by_table[table])
            output.write("\n")

        return output.getvalue()

    def decode(self, content: str) -> LedgerStore:
        tables = self._split_tables(content)
        try:
            return LedgerStore.from_records(
                users=[self._row_to_user(r) for r in tables.get("users", [])],
                payment_modes=[
                    PaymentMode(id=int(r["id"]), name=r["name"])
                    for r in tables.get("payment_mode", [])
                ],
                categories=[
                    Category(id=int(r["id"]), name=r["name"])
                    for r in tables.get("category", [])
                ],
                bills=[self._row_to_bill(r) for r in tables.get("bills", [])],
                splits=[
                    Split(
                        id=int(r["id"]),
                        bill_id=int(r["bill_id"]),
                        user_id=int(r["user_id"]),
                        amount=Decimal(r["amount"]),
                    )
                    for r in tables.get("bill_splits", [])
                ],
            )
        except (KeyError, ValueError, InvalidOperation, ValidationError) as e:
            raise LedgerParseError(f"Invalid tabular ledger row: {e}") from e

    def _split_tables(self, content: str) -> dict[str, list[dict[str, str]]]:
        """Group CSV records into {table name: [row dicts]}."""
        tables: dict[str, list[dict[str, str]]] = {}
        current: Optional[str] = None
        headers: Optional[list[str]] = None

        try:
            records = list(csv.reader(io.StringIO(content)))
        except csv.Error as e:
            raise LedgerParseError(f"Malformed CSV: {e}") from e

        for record in records:
            if not record or record == [""]:
                continue
            if record[0] == TABLE_MARKER and len(record) == 2:
                current = record[1].strip().lower()
                tables[current] = []
                headers = None
                continue
            if current is None:
                raise LedgerParseError("Data found before the first TABLE line")
            if headers is None:
                headers = [h.strip() for h in record]
                continue
            padded = record + [""] * (len(headers) - len(record))
            tables[current].append(dict(zip(headers, padded)))

        return tables

    def _bill_to_row(self, bill: Bill) -> list:
        return [
            bill.id,
            bill.description,
            str(bill.total_amount),
            bill.payer_id,
            bill.occurred_at.isoformat(),
            bill.recurrence,
            _opt_str(bill.payment_mode_id),
            _opt_str(bill.category_id),
            bill.comment,
            bill.attachment_ref,
        ]

    def _row_to_bill(self, row: dict[str, str]) -> Bill:
        return Bill(
            id=int(row["id"]),
            description=row["description"],
            total_amount=Decimal(row["total_amount"]),
            payer_id=int(row["who_paid_id"]),
            occurred_at=parse_timestamp(row["timestamp"]),
            recurrence=row.get("repeat", ""),
            payment_mode_id=_opt_int(row.get("payment_mode_id", "")),
            category_id=_opt_int(row.get("category_id", "")),
            comment=row.get("comment", ""),
            attachment_ref=row.get("file_link", ""),
        )

    def _row_to_user(self, row: dict[str, str]) -> User:
        return User(
            id=int(row["id"]),
            name=row["name"],
            external_id=row.get("external_id") or None,
            balance=_opt_decimal(row.get("balance", "")),
        )


# =============================================================================
# DOCUMENT ENCODING
# =============================================================================

class _NamedRecord(BaseModel):
    name: str


class _UserRecord(BaseModel):
    name: str
    external_id: Optional[str] = None
    balance: Optional[Decimal] = None


class _SplitRecord(BaseModel):
    user_id: int
    amount: Decimal


class _BillRecord(BaseModel):
    description: str
    total_amount: Decimal
    who_paid_id: int
    timestamp: datetime
    repeat: str = ""
    payment_mode_id: Optional[int] = None
    category_id: Optional[int] = None
    comment: str = ""
    file_link: str = ""
    splits: dict[int, _SplitRecord] = Field(default_factory=dict)

    @field_validator("timestamp", mode="before")
    @classmethod
    def accept_epoch(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return parse_timestamp(v)
        if isinstance(v, str) and v.strip().isdigit():
            return parse_timestamp(v)
        return v


class _LedgerData(BaseModel):
    users: dict[int, _UserRecord] = Field(default_factory=dict)
    payment_modes: dict[int, _NamedRecord] = Field(default_factory=dict)
    categories: dict[int, _NamedRecord] = Field(default_factory=dict)
    bills: dict[int, _BillRecord] = Field(default_factory=dict)


class _LedgerDocument(BaseModel):
    meta: LedgerMeta = Field(default_factory=LedgerMeta)
    data: _LedgerData = Field(default_factory=_LedgerData)


class DocumentCodec(LedgerCodec):
    """The nested-document `.pson` encoding."""

    name = "pson"
    suffix = ".pson"

    def encode(self, store: LedgerStore) -> str:
        document = _LedgerDocument(
            meta=store.meta,
            data=_LedgerData(
                users={
                    u.id: _UserRecord(name=u.name, external_id=u.external_id, balance=u.balance)
                    for u in store.get_users()
                },
                payment_modes={m.id: _NamedRecord(name=m.name) for m in store.get_payment_modes()},
                categories={c.id: _NamedRecord(name=c.name) for c in store.get_categories()},
                bills={
                    b.id: _BillRecord(
                        description=b.description,
                        total_amount=b.total_amount,
                        who_paid_id=b.payer_id,
                        timestamp=b.occurred_at,
                        repeat=b.recurrence,
                        payment_mode_id=b.payment_mode_id,
                        category_id=b.category_id,
                        comment=b.comment,
                        file_link=b.attachment_ref,
                        splits={
                            s.id: _SplitRecord(user_id=s.user_id, amount=s.amount)
                            for s in store.get_splits(b.id)
                        },
                    )
                    for b in store.get_bills()
                },
            ),
        )
        # Decimals serialize as strings, which keeps them exact.
        return document.model_dump_json(indent=2) + "\n"

    def decode(self, content: str) -> LedgerStore:
        try:
            document = _LedgerDocument.model_validate_json(content)
        except ValidationError as e:
            raise LedgerParseError(f"Invalid ledger document: {e}") from e

        data = document.data
        splits = [
            Split(id=sid, bill_id=bid, user_id=s.user_id, amount=s.amount)
            for bid, record in data.bills.items()
            for sid, s in record.splits.items()
        ]
        try:
            return LedgerStore.from_records(
                users=[
                    User(id=uid, name=u.name, external_id=u.external_id, balance=u.balance)
                    for uid, u in data.users.items()
                ],
                payment_modes=[PaymentMode(id=i, name=r.name) for i, r in data.payment_modes.items()],
                categories=[Category(id=i, name=r.name) for i, r in data.categories.items()],
                bills=[
                    Bill(
                        id=bid,
                        description=b.description,
                        total_amount=b.total_amount,
                        payer_id=b.who_paid_id,
                        occurred_at=b.timestamp,
                        recurrence=b.repeat,
                        payment_mode_id=b.payment_mode_id,
                        category_id=b.category_id,
                        comment=b.comment,
                        attachment_ref=b.file_link,
                    )
                    for bid, b in data.bills.items()
                ],
                splits=splits,
                meta=document.meta,
            )
        except ValidationError as e:
            raise LedgerParseError(f"Invalid ledger document: {e}") from e


CODECS: dict[str, LedgerCodec] = {
    TabularCodec.name: TabularCodec(),
    DocumentCodec.name: DocumentCodec(),
}


def codec_for(name_or_path: Union[str, Path], default: str = "pcsv") -> LedgerCodec:
    """
    Pick a codec by name ("pcsv"/"pson") or by file suffix.

    Falls back to `default` when the suffix is not recognised.
    """
    key = str(name_or_path).lower()
    if key in CODECS:
        return CODECS[key]
    for codec in CODECS.values():
        if key.endswith(codec.suffix):
            return codec
    return CODECS[default]
