"""Identity directory services."""

from billsplit.services.identity.cache import IdentityCache
from billsplit.services.identity.directory import (
    DirectoryError,
    IdentityDirectory,
    normalize_users,
)
from billsplit.services.identity.resolver import IdentityResolver

__all__ = [
    "DirectoryError",
    "IdentityCache",
    "IdentityDirectory",
    "IdentityResolver",
    "normalize_users",
]
