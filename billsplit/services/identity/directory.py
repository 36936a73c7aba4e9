"""
Identity directory port.

The host application supplies an IdentityDirectory that talks to the
real user directory. Its payloads are loosely shaped; normalize_users
turns any of the shapes seen in the wild into DirectoryUser models.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog
from pydantic import ValidationError

from billsplit.models.identity import DirectoryUser


logger = structlog.get_logger(__name__)


class DirectoryError(Exception):
    """The identity directory could not answer."""
    pass


class IdentityDirectory(ABC):
    """Minimal read-only view of an external user directory."""

    @abstractmethod
    async def get_me(self) -> Any:
        """The signed-in user."""
        pass

    @abstractmethod
    async def get_user(self, external_id: str) -> Any:
        pass

    @abstractmethod
    async def list_users(self, query: str, limit: int) -> Any:
        """Users matching a display name, mail or username query."""
        pass


def normalize_users(payload: Any) -> list[DirectoryUser]:
    """
    Accepts:
    - a list of user objects
    - {"value": [...]} or {"data": [...]}
    - {"value": {...}}
    - a single user object
    Entries without an id are dropped.
    """
    if payload is None:
        return []

    if isinstance(payload, list):
        raw = payload
    elif isinstance(payload, dict) and isinstance(payload.get("value"), list):
        raw = payload["value"]
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        raw = payload["data"]
    elif isinstance(payload, dict) and isinstance(payload.get("value"), dict):
        raw = [payload["value"]]
    elif isinstance(payload, dict):
        raw = [payload]
    else:
        logger.warning("unexpected_directory_payload", payload_type=type(payload).__name__)
        return []

    users = []
    for entry in raw:
        if isinstance(entry, DirectoryUser):
            users.append(entry)
            continue
        try:
            users.append(DirectoryUser.model_validate(entry))
        except ValidationError as e:
            logger.warning("directory_entry_skipped", error=str(e))
    return users
