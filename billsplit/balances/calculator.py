"""
Balance Calculator

Derives each user's net balance from the ledger:

    payer        += bill.total_amount
    split.user   -= split.amount

DESIGN DECISION: There are four ways to get a balance, from most to
least expensive:

1. FULL      - scan every bill and split (calculate_full)
2. CACHED    - trust the balances stored on the users, or a memoized
               full result for unchanged ledger content (calculate)
3. PER-USER  - rescan bills, but only for users a change could touch
               (recalculate_users / recalculate_for_bill)
4. DELTA     - apply the signed difference between the old and new
               state of one bill (apply_delta / apply_impact)

Every cheaper path falls back to FULL when anything goes wrong.
Correctness beats cost: a caller always gets a best-effort balance set,
and `last_error` tells it that something went sideways.
"""

import asyncio
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Sequence

import structlog

from billsplit.balances.cache import BalanceCache, CacheKey
from billsplit.config import LedgerSettings, get_settings
from billsplit.ledger.store import LedgerStore
from billsplit.models.ledger import Bill, Split, User
from billsplit.models.settlement import UserBalance


logger = structlog.get_logger(__name__)

SETTLEMENT_TOLERANCE = Decimal("0.01")
DELTA_TOLERANCE = Decimal("0.001")
ZERO = Decimal("0")


class BalanceCalculator:
    """
    Computes, caches and incrementally maintains user balances.

    The memo cache is injected rather than global, so each ledger
    session owns its own cached state.
    """

    def __init__(
        self,
        cache: Optional[BalanceCache] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._cache = cache or BalanceCache()
        settings = settings or get_settings().ledger
        self._settled_tolerance = settings.settlement_tolerance
        self._delta_tolerance = settings.delta_tolerance
        self.last_error: Optional[str] = None

    @property
    def cache(self) -> BalanceCache:
        return self._cache

    @property
    def settlement_tolerance(self) -> Decimal:
        return self._settled_tolerance

    def is_settled(self, balances: Iterable[UserBalance]) -> bool:
        """Settled under the configured tolerance."""
        return is_settled(balances, self._settled_tolerance)

    def get_unsettled_balances(self, balances: Iterable[UserBalance]) -> list[UserBalance]:
        return get_unsettled_balances(balances, self._settled_tolerance)

    def format_balance(self, balance: Decimal) -> str:
        return format_balance(balance, self._settled_tolerance)

    # ------------------------------------------------------------------ #
    # Full calculation
    # ------------------------------------------------------------------ #

    @staticmethod
    def calculate_full(
        bills: Iterable[Bill],
        splits: Iterable[Split],
        users: Sequence[User],
    ) -> list[UserBalance]:
        """
        Net balance of every user from scratch.

        Order-independent: the result depends only on the bill/split set.
        Amounts owed to or by ids that are not users are dropped.
        """
        balances: dict[int, Decimal] = defaultdict(Decimal)
        for user in users:
            balances[user.id] = ZERO

        for bill in bills:
            balances[bill.payer_id] += bill.total_amount
        for split in splits:
            balances[split.user_id] -= split.amount

        return [
            UserBalance(user_id=user.id, name=user.name, balance=balances[user.id])
            for user in users
        ]

    async def calculate(self, store: LedgerStore, force: bool = False) -> list[UserBalance]:
        """
        Balances for every user, as cheaply as the ledger allows.

        If every user carries a cached balance, those are returned as-is.
        Otherwise a memoized result for identical ledger content is reused,
        and failing that a full recalculation runs and is saved back onto
        the users.
        """
        self.last_error = None
        if force:
            return await self.force_recalculate(store)

        try:
            if store.has_cached_balances():
                return [
                    UserBalance(user_id=u.id, name=u.name, balance=u.balance)
                    for u in store.get_users()
                ]

            cached = self._cache.get(self._cache_key(store))
            if cached is not None:
                self.save_balances_to_users(store, cached)
                return cached
        except Exception as e:
            self._record_error("cached", e)

        return await self._recalculate_all(store)

    async def force_recalculate(self, store: LedgerStore) -> list[UserBalance]:
        """Ignore every cache and rescan the whole ledger."""
        self._cache.invalidate()
        return await self._recalculate_all(store)

    async def _recalculate_all(self, store: LedgerStore) -> list[UserBalance]:
        # Yield once so a large rescan doesn't starve other tasks.
        await asyncio.sleep(0)
        try:
            balances = self.calculate_full(
                store.get_bills(),
                store.get_all_splits(),
                store.get_users(),
            )
        except Exception as e:
            self._record_error("full", e)
            return []

        self.save_balances_to_users(store, balances)
        self._cache.put(self._cache_key(store), balances)
        logger.info("balances_recalculated", mode="full", user_count=len(balances))
        return balances

    @staticmethod
    def save_balances_to_users(store: LedgerStore, balances: Iterable[UserBalance]) -> None:
        store.save_balances({b.user_id: b.balance for b in balances})

    @staticmethod
    def _cache_key(store: LedgerStore) -> CacheKey:
        bills, splits, users = store.counts()
        return bills, splits, users, store.revision

    def invalidate(self) -> None:
        self._cache.invalidate()

    def _record_error(self, path: str, error: Exception) -> None:
        self.last_error = f"{path}: {error}"
        logger.error("balance_calculation_failed", path=path, error=str(error))

    # ------------------------------------------------------------------ #
    # Per-user recalculation
    # ------------------------------------------------------------------ #

    def recalculate_users(
        self,
        store: LedgerStore,
        affected_user_ids: Iterable[int],
    ) -> dict[int, Decimal]:
        """
        Recompute balances for a subset of users.

        Still one pass over all bills, but bills that touch none of the
        affected users are skipped and only affected users are written.
        """
        affected = set(affected_user_ids)
        balances = {user_id: ZERO for user_id in affected}

        for bill in store.get_bills():
            splits = store.get_splits(bill.id)
            if bill.payer_id not in affected and not any(
                s.user_id in affected for s in splits
            ):
                continue
            if bill.payer_id in affected:
                balances[bill.payer_id] += bill.total_amount
            for split in splits:
                if split.user_id in affected:
                    balances[split.user_id] -= split.amount

        written = {
            user_id: balance
            for user_id, balance in balances.items()
            if store.set_user_balance(user_id, balance)
        }
        return written

    async def recalculate_for_bill(self, store: LedgerStore, bill_id: int) -> set[int]:
        """
        Refresh the balances of everyone a bill touches.

        If the bill no longer exists, or anything fails, the whole ledger
        is recalculated instead. Returns the ids of users whose balance
        was rewritten.
        """
        try:
            found = store.get_bill_with_splits(bill_id)
            if found is None:
                logger.warning("bill_not_found_full_recalculation", bill_id=bill_id)
                balances = await self.force_recalculate(store)
                return {b.user_id for b in balances}

            bill, splits = found
            affected = {bill.payer_id} | {s.user_id for s in splits}

            await asyncio.sleep(0)
            written = self.recalculate_users(store, affected)
            logger.info(
                "balances_incremental_update",
                bill_id=bill_id,
                user_count=len(written),
            )
            return set(written)
        except Exception as e:
            self._record_error("per_user", e)
            balances = await self.force_recalculate(store)
            return {b.user_id for b in balances}

    # ------------------------------------------------------------------ #
    # Delta updates
    # ------------------------------------------------------------------ #

    @staticmethod
    def bill_impact(bill: Bill, splits: Iterable[Split]) -> dict[int, Decimal]:
        """
        Signed effect of one bill on each user's balance.

        Bill 1 paid by user 2 for 100, split 50/50 between users 3 and 4
        has impact {2: +100, 3: -50, 4: -50}.
        """
        impact: dict[int, Decimal] = defaultdict(Decimal)
        impact[bill.payer_id] += bill.total_amount
        for split in splits:
            impact[split.user_id] -= split.amount
        return dict(impact)

    @staticmethod
    def apply_impact(
        store: LedgerStore,
        impact: Mapping[int, Decimal],
        sign: int = 1,
    ) -> set[int]:
        """
        Add `sign` x impact to the cached balances, exactly.

        Users missing from the store are skipped; a missing cached
        balance counts as zero.
        """
        touched = set()
        for user_id, change in impact.items():
            user = store.get_user(user_id)
            if user is None:
                continue
            current = user.balance if user.balance is not None else ZERO
            store.set_user_balance(user_id, current + sign * change)
            touched.add(user_id)
        return touched

    def apply_delta(
        self,
        store: LedgerStore,
        old_bill: Optional[Bill],
        old_splits: Iterable[Split],
        new_bill: Optional[Bill],
        new_splits: Iterable[Split],
    ) -> set[int]:
        """
        Move cached balances from the old state of a bill to the new one.

        Pass old_bill=None for a creation and new_bill=None for a deletion.
        Only the net difference is applied; users whose net change is
        below the delta tolerance are left untouched.
        """
        net: dict[int, Decimal] = defaultdict(Decimal)
        if old_bill is not None:
            for user_id, change in self.bill_impact(old_bill, old_splits).items():
                net[user_id] -= change
        if new_bill is not None:
            for user_id, change in self.bill_impact(new_bill, new_splits).items():
                net[user_id] += change

        significant = {
            user_id: change
            for user_id, change in net.items()
            if abs(change) >= self._delta_tolerance
        }
        touched = self.apply_impact(store, significant)
        logger.info("balances_delta_applied", user_count=len(touched))
        return touched


# =============================================================================
# DERIVED QUERIES
# =============================================================================

def get_creditors(balances: Iterable[UserBalance]) -> list[UserBalance]:
    """Users who are owed money, largest first."""
    return sorted(
        (b for b in balances if b.balance > 0),
        key=lambda b: b.balance,
        reverse=True,
    )


def get_debtors(balances: Iterable[UserBalance]) -> list[UserBalance]:
    """Users who owe money, most negative first."""
    return sorted(
        (b for b in balances if b.balance < 0),
        key=lambda b: b.balance,
    )


def is_settled(
    balances: Iterable[UserBalance],
    tolerance: Decimal = SETTLEMENT_TOLERANCE,
) -> bool:
    return all(abs(b.balance) < tolerance for b in balances)


def get_unsettled_balances(
    balances: Iterable[UserBalance],
    tolerance: Decimal = SETTLEMENT_TOLERANCE,
) -> list[UserBalance]:
    return [b for b in balances if abs(b.balance) >= tolerance]


def get_user_balance(balances: Iterable[UserBalance], user_id: int) -> Optional[UserBalance]:
    return next((b for b in balances if b.user_id == user_id), None)


def format_balance(balance: Decimal, tolerance: Decimal = SETTLEMENT_TOLERANCE) -> str:
    """'+12.50' / '-3.00', or '0.00' for anything within tolerance of zero."""
    if abs(balance) < tolerance:
        return "0.00"
    amount = abs(balance).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"+{amount}" if balance > 0 else f"-{amount}"
