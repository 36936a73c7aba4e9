"""
Identity Resolver

Typed adapter over the external identity directory.

DESIGN DECISION: Identity lookups NEVER break the ledger. A directory
that is down, slow or returns garbage degrades to fallback identities:

    current_user()  directory -> configured default -> "Current User"
    resolve(id)     directory -> "Unknown User"
    search(query)   directory -> []

Every directory call is retried with tenacity before it counts as a
failure, and failures are audited when an audit logger is attached.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from billsplit.config import IdentitySettings, get_settings
from billsplit.models.identity import (
    CURRENT_USER_NAME,
    UNKNOWN_USER_NAME,
    DirectoryUser,
    ResolvedIdentity,
)
from billsplit.services.identity.cache import IdentityCache
from billsplit.services.identity.directory import IdentityDirectory, normalize_users

if TYPE_CHECKING:
    from billsplit.audit import AuditLogger


logger = structlog.get_logger(__name__)

CURRENT_USER_KEY = "me"


class IdentityResolver:
    """
    Resolves external identities to display-ready ResolvedIdentity models.

    The cache is injected so tests (and separate sessions) never share
    lookup state.
    """

    def __init__(
        self,
        directory: Optional[IdentityDirectory] = None,
        cache: Optional[IdentityCache] = None,
        settings: Optional[IdentitySettings] = None,
        audit_logger: Optional["AuditLogger"] = None,
    ):
        self._directory = directory
        self._cache = cache or IdentityCache()
        self._settings = settings or get_settings().identity
        self._audit = audit_logger

    @property
    def cache(self) -> IdentityCache:
        return self._cache

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    async def current_user(self) -> ResolvedIdentity:
        """Who is using the ledger. Never fails."""
        if self._cache.current_user is not None:
            return self._cache.current_user

        identity = None
        if self._directory is not None:
            try:
                identity = await self._cache.get_or_fetch(
                    CURRENT_USER_KEY,
                    lambda: self._fetch_one(self._directory.get_me),
                )
            except Exception as e:
                await self._lookup_failed(CURRENT_USER_KEY, e)

        if identity is None:
            identity = ResolvedIdentity(
                name=self._settings.default_user_name or CURRENT_USER_NAME,
                external_id=self._settings.default_user_id,
            )

        self._cache.current_user = identity
        return identity

    async def get_user(self, external_id: Optional[str]) -> Optional[ResolvedIdentity]:
        """A directory user, or None when unknown or unreachable."""
        if not external_id or self._directory is None:
            return None
        try:
            return await self._cache.get_or_fetch(
                f"user:{external_id}",
                lambda: self._fetch_one(self._directory.get_user, external_id),
            )
        except Exception as e:
            await self._lookup_failed(external_id, e)
            return None

    async def resolve(self, external_id: Optional[str]) -> ResolvedIdentity:
        """Like get_user, but falls back to an 'Unknown User' identity."""
        identity = await self.get_user(external_id)
        if identity is None:
            return ResolvedIdentity(name=UNKNOWN_USER_NAME, external_id=external_id)
        return identity

    async def search(self, query: str, limit: Optional[int] = None) -> list[ResolvedIdentity]:
        """
        Search the directory by display name, mail or username.

        Queries shorter than the configured minimum return nothing
        without touching the directory.
        """
        limit = limit or self._settings.search_limit
        normalized = (query or "").strip().lower()
        if len(normalized) < self._settings.search_min_length or self._directory is None:
            return []

        try:
            return await self._cache.get_or_fetch(
                f"search:{normalized}_{limit}",
                lambda: self._fetch_many(normalized, limit),
            )
        except Exception as e:
            await self._lookup_failed(f"search:{normalized}", e)
            return []

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_cache_pattern(self, pattern: str) -> int:
        return self._cache.clear_pattern(pattern)

    def avatar_url(self, external_id: str) -> Optional[str]:
        if not self._settings.base_url:
            return None
        base = self._settings.base_url.rstrip("/")
        return f"{base}/graph/v1.0/users/{external_id}/photo/$value"

    # ------------------------------------------------------------------ #
    # Directory access
    # ------------------------------------------------------------------ #

    async def _call(self, method: Callable[..., Awaitable[Any]], *args) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.lookup_attempts),
            wait=wait_exponential(multiplier=0.1, max=1),
            reraise=True,
        ):
            with attempt:
                return await method(*args)

    async def _fetch_one(
        self,
        method: Callable[..., Awaitable[Any]],
        *args,
    ) -> Optional[ResolvedIdentity]:
        users = normalize_users(await self._call(method, *args))
        if not users:
            return None
        return self._to_identity(users[0])

    async def _fetch_many(self, query: str, limit: int) -> list[ResolvedIdentity]:
        users = normalize_users(await self._call(self._directory.list_users, query, limit))
        results = [self._to_identity(user) for user in users[:limit]]
        logger.info("directory_search", query=query, result_count=len(results))
        return results

    def _to_identity(self, user: DirectoryUser) -> ResolvedIdentity:
        return ResolvedIdentity(
            name=user.best_display_name,
            external_id=user.id,
            mail=user.mail,
            username=user.username,
            avatar=self.avatar_url(user.id) or user.profile_image or user.avatar,
        )

    async def _lookup_failed(self, key: str, error: Exception) -> None:
        logger.warning("identity_lookup_failed", key=key, error=str(error))
        if self._audit is not None:
            await self._audit.log_identity_lookup_failed(
                external_id=key,
                error_message=str(error),
            )
