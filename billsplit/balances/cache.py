"""
Balance memo cache.

Owned by a BalanceCalculator and passed in at construction, so two
calculators (or two tests) never share cached results.
"""

from typing import Optional

from billsplit.models.settlement import UserBalance


CacheKey = tuple[int, int, int, int]


class BalanceCache:
    """Remembers the last full calculation and the ledger content it was for."""

    def __init__(self):
        self._key: Optional[CacheKey] = None
        self._balances: list[UserBalance] = []
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey) -> Optional[list[UserBalance]]:
        if self._key is not None and self._key == key:
            self.hits += 1
            return [b.model_copy() for b in self._balances]
        self.misses += 1
        return None

    def put(self, key: CacheKey, balances: list[UserBalance]) -> None:
        self._key = key
        self._balances = [b.model_copy() for b in balances]

    def invalidate(self) -> None:
        self._key = None
        self._balances = []
