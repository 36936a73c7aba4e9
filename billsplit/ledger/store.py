"""
Ledger Store

The canonical in-memory representation of a ledger: users, payment
modes, categories, bills and splits.

DESIGN DECISION: The store owns the tables and nothing else. It does
not know how balances are computed. Bill writes here are RAW writes;
the only sanctioned way to change bills is the mutation pipeline,
which pairs every raw write with its balance side effect.

Lookups by id are O(1) (dicts keyed by id, plus a bill -> splits index).
Aggregate reads are O(n) scans and always return lists sorted by id.
"""

from decimal import Decimal
from typing import Iterable, Mapping, Optional

import structlog

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
    utc_now,
)


logger = structlog.get_logger(__name__)


class LedgerStore:
    """
    In-memory ledger tables.

    Ids are assigned per table as max(existing) + 1, and never handed
    out twice in the lifetime of a store, even after a delete.
    """

    TABLES = ("users", "payment_modes", "categories", "bills", "splits")

    def __init__(self, meta: Optional[LedgerMeta] = None):
        self.meta = meta or LedgerMeta()
        self._users: dict[int, User] = {}
        self._payment_modes: dict[int, PaymentMode] = {}
        self._categories: dict[int, Category] = {}
        self._bills: dict[int, Bill] = {}
        self._splits: dict[int, Split] = {}
        self._splits_by_bill: dict[int, list[int]] = {}
        self._high_water: dict[str, int] = {table: 0 for table in self.TABLES}
        self._revision = 0

    @classmethod
    def from_records(
        cls,
        users: Iterable[User] = (),
        payment_modes: Iterable[PaymentMode] = (),
        categories: Iterable[Category] = (),
        bills: Iterable[Bill] = (),
        splits: Iterable[Split] = (),
        meta: Optional[LedgerMeta] = None,
    ) -> "LedgerStore":
        """Build a store from already-identified records (used by the codecs)."""
        store = cls(meta=meta)
        for user in users:
            store._users[user.id] = user
        for mode in payment_modes:
            store._payment_modes[mode.id] = mode
        for category in categories:
            store._categories[category.id] = category
        for bill in bills:
            store._bills[bill.id] = bill
        colliding = []
        for split in splits:
            if split.id in store._splits:
                colliding.append(split)
            else:
                store._index_split(split)
        # Split ids must be unique across the ledger; later duplicates are
        # renumbered above every existing id and stay with their own bill.
        last_split_id = max(store._splits, default=0)
        for split in colliding:
            last_split_id += 1
            store._index_split(split.model_copy(update={"id": last_split_id}))
        if colliding:
            logger.warning(
                "duplicate_split_ids_renumbered",
                count=len(colliding),
                bill_ids=sorted({s.bill_id for s in colliding}),
            )
        for table, rows in (
            ("users", store._users),
            ("payment_modes", store._payment_modes),
            ("categories", store._categories),
            ("bills", store._bills),
            ("splits", store._splits),
        ):
            store._high_water[table] = max(rows, default=0)
        return store

    # ------------------------------------------------------------------ #
    # Bookkeeping
    # ------------------------------------------------------------------ #

    @property
    def revision(self) -> int:
        """Incremented on every mutation."""
        return self._revision

    def _touch(self) -> None:
        self._revision += 1
        self.meta.modified = utc_now()

    def next_id(self, table: str) -> int:
        """Reserve the next id for a table."""
        rows = self._table(table)
        next_id = max(max(rows, default=0), self._high_water[table]) + 1
        self._high_water[table] = next_id
        return next_id

    def _table(self, table: str) -> dict:
        return {
            "users": self._users,
            "payment_modes": self._payment_modes,
            "categories": self._categories,
            "bills": self._bills,
            "splits": self._splits,
        }[table]

    def _index_split(self, split: Split) -> None:
        self._splits[split.id] = split
        self._splits_by_bill.setdefault(split.bill_id, []).append(split.id)

    def _drop_splits(self, bill_id: int) -> list[Split]:
        removed = [self._splits.pop(sid) for sid in self._splits_by_bill.pop(bill_id, [])]
        return removed

    def _write_splits(self, bill_id: int, drafts: Iterable[SplitDraft]) -> list[Split]:
        written = []
        for draft in drafts:
            split = Split(
                id=self.next_id("splits"),
                bill_id=bill_id,
                user_id=draft.user_id,
                amount=draft.amount,
            )
            self._index_split(split)
            written.append(split)
        return written

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_users(self) -> list[User]:
        return [self._users[uid] for uid in sorted(self._users)]

    def get_user(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    def get_payment_modes(self) -> list[PaymentMode]:
        return [self._payment_modes[pid] for pid in sorted(self._payment_modes)]

    def get_payment_mode(self, payment_mode_id: int) -> Optional[PaymentMode]:
        return self._payment_modes.get(payment_mode_id)

    def get_categories(self) -> list[Category]:
        return [self._categories[cid] for cid in sorted(self._categories)]

    def get_category(self, category_id: int) -> Optional[Category]:
        return self._categories.get(category_id)

    def get_bills(self) -> list[Bill]:
        return [self._bills[bid] for bid in sorted(self._bills)]

    def get_bill(self, bill_id: int) -> Optional[Bill]:
        return self._bills.get(bill_id)

    def get_splits(self, bill_id: int) -> list[Split]:
        return [self._splits[sid] for sid in self._splits_by_bill.get(bill_id, [])]

    def get_all_splits(self) -> list[Split]:
        return [self._splits[sid] for sid in sorted(self._splits)]

    def get_bill_with_splits(self, bill_id: int) -> Optional[tuple[Bill, list[Split]]]:
        """O(1) lookup of a bill and its splits; None if the bill is gone."""
        bill = self._bills.get(bill_id)
        if bill is None:
            return None
        return bill, self.get_splits(bill_id)

    def bills_involving(self, user_id: int) -> list[Bill]:
        """Bills where the user paid or owes a split."""
        involved = []
        for bill in self.get_bills():
            if bill.payer_id == user_id or any(
                split.user_id == user_id for split in self.get_splits(bill.id)
            ):
                involved.append(bill)
        return involved

    def counts(self) -> tuple[int, int, int]:
        """(bills, splits, users) - the content part of the balance cache key."""
        return len(self._bills), len(self._splits), len(self._users)

    # ------------------------------------------------------------------ #
    # Raw bill writes (mutation pipeline only)
    # ------------------------------------------------------------------ #

    def insert_bill(self, draft: BillDraft) -> tuple[Bill, list[Split]]:
        bill = Bill.from_draft(self.next_id("bills"), draft)
        self._bills[bill.id] = bill
        splits = self._write_splits(bill.id, draft.splits)
        self._touch()
        return bill, splits

    def replace_bill(self, bill_id: int, draft: BillDraft) -> tuple[Bill, list[Split]]:
        """Overwrite a bill and regenerate its splits."""
        bill = Bill.from_draft(bill_id, draft)
        self._bills[bill_id] = bill
        self._drop_splits(bill_id)
        splits = self._write_splits(bill_id, draft.splits)
        self._touch()
        return bill, splits

    def remove_bill(self, bill_id: int) -> Optional[tuple[Bill, list[Split]]]:
        bill = self._bills.pop(bill_id, None)
        if bill is None:
            return None
        splits = self._drop_splits(bill_id)
        self._touch()
        return bill, splits

    def restore_bill(self, bill_id: int, previous: Optional[tuple[Bill, list[Split]]]) -> None:
        """Put a bill back exactly as it was (or remove it if it didn't exist)."""
        self._bills.pop(bill_id, None)
        self._drop_splits(bill_id)
        if previous is not None:
            bill, splits = previous
            self._bills[bill.id] = bill
            for split in splits:
                self._index_split(split)
        self._touch()

    # ------------------------------------------------------------------ #
    # Cached balances
    # ------------------------------------------------------------------ #

    def set_user_balance(self, user_id: int, balance: Optional[Decimal]) -> bool:
        user = self._users.get(user_id)
        if user is None:
            return False
        self._users[user_id] = user.model_copy(update={"balance": balance})
        return True

    def save_balances(self, balances: Mapping[int, Decimal]) -> None:
        """Write computed balances onto the users they belong to."""
        for user_id, balance in balances.items():
            self.set_user_balance(user_id, balance)

    def clear_balances(self, value: Optional[Decimal] = None) -> None:
        for user_id in list(self._users):
            self.set_user_balance(user_id, value)

    def has_cached_balances(self) -> bool:
        return bool(self._users) and all(
            user.balance is not None for user in self._users.values()
        )

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #

    def add_user(
        self,
        name: str,
        external_id: Optional[str] = None,
        balance: Optional[Decimal] = None,
    ) -> User:
        user = User(
            id=self.next_id("users"),
            name=name,
            external_id=external_id or None,
            balance=balance,
        )
        self._users[user.id] = user
        self._touch()
        return user

    def update_user(
        self,
        user_id: int,
        name: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Optional[User]:
        """Edit a user's profile. The cached balance is left alone."""
        user = self._users.get(user_id)
        if user is None:
            logger.warning("user_not_found", user_id=user_id, operation="update")
            return None
        changes = {}
        if name is not None:
            changes["name"] = name
        if external_id is not None:
            changes["external_id"] = external_id or None
        updated = User.model_validate({**user.model_dump(), **changes})
        self._users[user_id] = updated
        self._touch()
        return updated

    def delete_user(self, user_id: int) -> bool:
        """
        Remove a user.

        Bills the user is party to are NOT deleted; they keep pointing at
        the vanished id and stop contributing to anyone's visible balance.
        """
        if self._users.pop(user_id, None) is None:
            logger.warning("user_not_found", user_id=user_id, operation="delete")
            return False
        orphaned = self.bills_involving(user_id)
        if orphaned:
            logger.warning(
                "user_deleted_with_bills",
                user_id=user_id,
                bill_ids=[bill.id for bill in orphaned],
            )
        self._touch()
        return True

    def find_user(self, name: str, external_id: Optional[str] = None) -> Optional[User]:
        """Match by external identity first, display name second."""
        if external_id:
            for user in self.get_users():
                if user.external_id == external_id:
                    return user
        for user in self.get_users():
            if user.name == name:
                return user
        return None

    # ------------------------------------------------------------------ #
    # Payment modes and categories
    # ------------------------------------------------------------------ #

    def add_payment_mode(self, name: str) -> PaymentMode:
        mode = PaymentMode(id=self.next_id("payment_modes"), name=name)
        self._payment_modes[mode.id] = mode
        self._touch()
        return mode

    def update_payment_mode(self, payment_mode_id: int, name: str) -> Optional[PaymentMode]:
        if payment_mode_id not in self._payment_modes:
            logger.warning("payment_mode_not_found", payment_mode_id=payment_mode_id)
            return None
        mode = PaymentMode(id=payment_mode_id, name=name)
        self._payment_modes[payment_mode_id] = mode
        self._touch()
        return mode

    def delete_payment_mode(self, payment_mode_id: int) -> bool:
        if self._payment_modes.pop(payment_mode_id, None) is None:
            logger.warning("payment_mode_not_found", payment_mode_id=payment_mode_id)
            return False
        self._touch()
        return True

    def add_category(self, name: str) -> Category:
        category = Category(id=self.next_id("categories"), name=name)
        self._categories[category.id] = category
        self._touch()
        return category

    def update_category(self, category_id: int, name: str) -> Optional[Category]:
        if category_id not in self._categories:
            logger.warning("category_not_found", category_id=category_id)
            return None
        category = Category(id=category_id, name=name)
        self._categories[category_id] = category
        self._touch()
        return category

    def delete_category(self, category_id: int) -> bool:
        if self._categories.pop(category_id, None) is None:
            logger.warning("category_not_found", category_id=category_id)
            return False
        self._touch()
        return True

    # ------------------------------------------------------------------ #
    # Seeding
    # ------------------------------------------------------------------ #

    def ensure_defaults(
        self,
        current_user_name: str,
        current_user_identity: Optional[str] = None,
    ) -> User:
        """
        Make a freshly opened ledger usable. Idempotent.

        Seeds payment modes and categories when their tables are empty,
        and adds the current user unless one already matches.
        Returns the current user's record.
        """
        if not self._payment_modes:
            for name in DEFAULT_PAYMENT_MODES:
                self.add_payment_mode(name)
        if not self._categories:
            for name in DEFAULT_CATEGORIES:
                self.add_category(name)

        existing = self.find_user(current_user_name, current_user_identity)
        if existing is not None:
            return existing

        user = self.add_user(
            name=current_user_name,
            external_id=current_user_identity,
            balance=Decimal("0.00"),
        )
        logger.info("current_user_seeded", user_id=user.id, name=user.name)
        return user
