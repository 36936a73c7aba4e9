"""
Identity lookup cache with in-flight request sharing.

Concurrent lookups for the same key await one shared task instead of
each hitting the directory. A lookup that returns None or raises is
not remembered, so the next caller tries again.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional

from billsplit.models.identity import ResolvedIdentity


class IdentityCache:
    """Completed results plus the lookups still in flight."""

    def __init__(self):
        self._values: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self.current_user: Optional[ResolvedIdentity] = None
        self.hits = 0
        self.fetches = 0

    def __contains__(self, key: str) -> bool:
        return key in self._values

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._values:
            self.hits += 1
            return self._values[key]

        task = self._pending.get(key)
        if task is not None:
            return await task

        self.fetches += 1
        task = asyncio.ensure_future(fetch())
        self._pending[key] = task
        try:
            value = await task
        finally:
            self._pending.pop(key, None)

        if value is not None:
            self._values[key] = value
        return value

    def clear(self) -> None:
        self._values.clear()
        self._pending.clear()
        self.current_user = None

    def clear_pattern(self, pattern: str) -> int:
        """Forget every cached key matching a regular expression."""
        regex = re.compile(pattern)
        doomed = [key for key in self._values if regex.search(key)]
        for key in doomed:
            del self._values[key]
        return len(doomed)
