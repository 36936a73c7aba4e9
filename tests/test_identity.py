"""Tests for identity resolution against a fake directory."""

import asyncio

import pytest

from billsplit.audit import AuditLogger
from billsplit.config import IdentitySettings
from billsplit.models.audit import AuditEventType
from billsplit.services.identity import (
    DirectoryError,
    IdentityCache,
    IdentityDirectory,
    IdentityResolver,
    normalize_users,
)
from billsplit.services.storage import InMemoryAuditStorage


PEOPLE = {
    "u-1": {"id": "u-1", "displayName": "Alice Smith", "mail": "alice@example.com",
            "onPremisesSamAccountName": "asmith"},
    "u-2": {"id": "u-2", "mail": "bob@example.com", "profilePicture": "pics/bob.png"},
    "u-3": {"id": "u-3", "userPrincipalName": "carol@corp"},
}


class FakeDirectory(IdentityDirectory):
    """In-memory directory that counts calls and can be told to fail."""

    def __init__(self, me="u-1", failures=0, shape="value"):
        self.me = me
        self.failures = failures
        self.shape = shape
        self.calls = []

    async def _maybe_fail(self):
        await asyncio.sleep(0)
        if self.failures:
            self.failures -= 1
            raise DirectoryError("directory unavailable")

    async def get_me(self):
        self.calls.append(("get_me",))
        await self._maybe_fail()
        return PEOPLE.get(self.me)

    async def get_user(self, external_id):
        self.calls.append(("get_user", external_id))
        await self._maybe_fail()
        return PEOPLE.get(external_id)

    async def list_users(self, query, limit):
        self.calls.append(("list_users", query, limit))
        await self._maybe_fail()
        matches = [
            p for p in PEOPLE.values()
            if any(query in str(v).lower() for v in p.values())
        ][:limit]
        if self.shape == "value":
            return {"value": matches}
        if self.shape == "data":
            return {"data": matches}
        return matches


@pytest.fixture
def settings():
    return IdentitySettings(base_url="https://cloud.example.com/", lookup_attempts=2)


def make_resolver(directory, settings, **kwargs):
    return IdentityResolver(directory, cache=IdentityCache(), settings=settings, **kwargs)


class TestNormalizeUsers:
    """Directory payload shapes."""

    def test_shapes(self):
        """List, value list, data list, value object and bare object all work."""
        alice = PEOPLE["u-1"]
        for payload in ([alice], {"value": [alice]}, {"data": [alice]}, {"value": alice}, alice):
            users = normalize_users(payload)
            assert [u.id for u in users] == ["u-1"]

    def test_garbage(self):
        """Unusable payloads become an empty list."""
        assert normalize_users(None) == []
        assert normalize_users("nope") == []
        assert normalize_users([{"displayName": "No Id"}]) == []


class TestCurrentUser:
    """Who is using the ledger."""

    @pytest.mark.asyncio
    async def test_from_directory(self, settings):
        """The directory's answer wins and is cached."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)

        me = await resolver.current_user()
        again = await resolver.current_user()

        assert me.name == "Alice Smith"
        assert me.external_id == "u-1"
        assert me.username == "asmith"
        assert again is me
        assert directory.calls == [("get_me",)]

    @pytest.mark.asyncio
    async def test_configured_fallback(self):
        """Without a directory, configuration names the user."""
        settings = IdentitySettings(default_user_name="Dana", default_user_id="d-1")
        me = await make_resolver(None, settings).current_user()
        assert (me.name, me.external_id) == ("Dana", "d-1")

    @pytest.mark.asyncio
    async def test_last_resort(self):
        """Nothing configured, nothing reachable: 'Current User'."""
        settings = IdentitySettings(lookup_attempts=1)
        me = await make_resolver(FakeDirectory(failures=5), settings).current_user()
        assert me.name == "Current User"
        assert me.external_id is None
        assert not me.is_known


class TestLookups:
    """get_user / resolve."""

    @pytest.mark.asyncio
    async def test_display_name_fallbacks(self, settings):
        """Mail and principal name stand in for a missing display name."""
        resolver = make_resolver(FakeDirectory(), settings)
        assert (await resolver.get_user("u-2")).name == "bob@example.com"
        assert (await resolver.get_user("u-3")).name == "carol@corp"

    @pytest.mark.asyncio
    async def test_avatar_reference(self, settings):
        """Avatars point at the directory photo endpoint."""
        resolver = make_resolver(FakeDirectory(), settings)
        user = await resolver.get_user("u-1")
        assert user.avatar == "https://cloud.example.com/graph/v1.0/users/u-1/photo/$value"

    @pytest.mark.asyncio
    async def test_avatar_without_base_url(self):
        """Without a base URL the directory's own picture is used."""
        resolver = make_resolver(FakeDirectory(), IdentitySettings())
        assert (await resolver.get_user("u-2")).avatar == "pics/bob.png"

    @pytest.mark.asyncio
    async def test_results_are_cached(self, settings):
        """A second lookup doesn't hit the directory."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        await resolver.get_user("u-1")
        await resolver.get_user("u-1")
        assert directory.calls.count(("get_user", "u-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_call(self, settings):
        """In-flight requests for the same id are shared."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)

        results = await asyncio.gather(*(resolver.get_user("u-1") for _ in range(5)))

        assert all(r == results[0] for r in results)
        assert directory.calls == [("get_user", "u-1")]
        assert resolver.cache.pending_keys == []

    @pytest.mark.asyncio
    async def test_misses_are_not_cached(self, settings):
        """An unknown id is asked again next time."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        assert await resolver.get_user("u-404") is None
        assert await resolver.get_user("u-404") is None
        assert directory.calls.count(("get_user", "u-404")) == 2

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, settings):
        """One failure followed by success still resolves."""
        directory = FakeDirectory(failures=1)
        resolver = make_resolver(directory, settings)
        user = await resolver.get_user("u-1")
        assert user.name == "Alice Smith"
        assert len(directory.calls) == 2

    @pytest.mark.asyncio
    async def test_resolve_falls_back_and_audits(self, settings):
        """A dead directory gives 'Unknown User' and an audit event."""
        audit_storage = InMemoryAuditStorage()
        resolver = make_resolver(
            FakeDirectory(failures=10),
            settings,
            audit_logger=AuditLogger(audit_storage),
        )

        identity = await resolver.resolve("u-1")

        assert identity.name == "Unknown User"
        assert identity.external_id == "u-1"
        assert [e.event_type for e in audit_storage.events] == [
            AuditEventType.IDENTITY_LOOKUP_FAILED
        ]

    @pytest.mark.asyncio
    async def test_empty_id(self, settings):
        """No id, no lookup."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        assert await resolver.get_user("") is None
        assert (await resolver.resolve(None)).name == "Unknown User"
        assert directory.calls == []


class TestSearch:
    """Directory search."""

    @pytest.mark.asyncio
    async def test_short_queries_skip_directory(self, settings):
        """Queries under two characters return nothing."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        assert await resolver.search("a") == []
        assert await resolver.search("   ") == []
        assert directory.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shape", ["value", "data", "list"])
    async def test_finds_users(self, settings, shape):
        """Results are normalized whatever shape the directory uses."""
        resolver = make_resolver(FakeDirectory(shape=shape), settings)
        results = await resolver.search("  EXAMPLE.com ")
        assert [r.external_id for r in results] == ["u-1", "u-2"]

    @pytest.mark.asyncio
    async def test_cached_per_query_and_limit(self, settings):
        """The cache key includes the limit."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        await resolver.search("example", limit=5)
        await resolver.search("Example", limit=5)
        await resolver.search("example", limit=1)
        assert [c for c in directory.calls if c[0] == "list_users"] == [
            ("list_users", "example", 5),
            ("list_users", "example", 1),
        ]

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self, settings):
        """A broken directory search yields no results."""
        resolver = make_resolver(FakeDirectory(failures=10), settings)
        assert await resolver.search("example") == []


class TestCacheControl:
    """Explicit cache management."""

    @pytest.mark.asyncio
    async def test_clear_cache(self, settings):
        """Clearing forgets lookups and the current user."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        await resolver.current_user()
        await resolver.get_user("u-2")

        resolver.clear_cache()
        await resolver.current_user()
        await resolver.get_user("u-2")

        assert directory.calls.count(("get_me",)) == 2
        assert directory.calls.count(("get_user", "u-2")) == 2

    @pytest.mark.asyncio
    async def test_clear_cache_pattern(self, settings):
        """Pattern clearing only drops matching keys."""
        directory = FakeDirectory()
        resolver = make_resolver(directory, settings)
        await resolver.get_user("u-1")
        await resolver.get_user("u-2")
        await resolver.search("example")

        assert resolver.clear_cache_pattern(r"^search:") == 1
        assert "user:u-1" in resolver.cache
        assert "user:u-2" in resolver.cache

    def test_caches_are_independent(self, settings):
        """Two resolvers never share state."""
        first = make_resolver(FakeDirectory(), settings)
        second = make_resolver(FakeDirectory(), settings)
        assert first.cache is not second.cache


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
