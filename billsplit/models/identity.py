"""
Identity Models

Typed view of users in the external identity directory. The directory
speaks in loosely shaped payloads; everything past the resolver only
sees these models.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


UNKNOWN_USER_NAME = "Unknown User"
CURRENT_USER_NAME = "Current User"


class DirectoryUser(BaseModel):
    """
    A raw directory entry.

    Field names follow the directory's own casing; unknown fields are
    ignored so new directory attributes never break parsing.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    mail: Optional[str] = None
    sam_account_name: Optional[str] = Field(default=None, alias="onPremisesSamAccountName")
    principal_name: Optional[str] = Field(default=None, alias="userPrincipalName")
    photo: Optional[str] = None
    profile_picture: Optional[str] = Field(default=None, alias="profilePicture")
    thumbnail_photo: Optional[str] = Field(default=None, alias="thumbnailPhoto")
    avatar: Optional[str] = None

    @property
    def best_display_name(self) -> str:
        return (
            self.display_name
            or self.mail
            or self.sam_account_name
            or self.principal_name
            or UNKNOWN_USER_NAME
        )

    @property
    def username(self) -> Optional[str]:
        return self.sam_account_name or self.principal_name

    @property
    def profile_image(self) -> Optional[str]:
        return self.profile_picture or self.photo or self.thumbnail_photo


class ResolvedIdentity(BaseModel):
    """What the ledger needs to know about a person."""

    name: str
    external_id: Optional[str] = None
    mail: Optional[str] = None
    username: Optional[str] = None
    avatar: Optional[str] = None

    @property
    def is_known(self) -> bool:
        """True when backed by a real directory entry."""
        return bool(self.external_id) and self.name not in (
            UNKNOWN_USER_NAME,
            CURRENT_USER_NAME,
        )


def format_display_name(identity: ResolvedIdentity) -> str:
    """Render `name (external id)`, or just the name when there is no id."""
    if identity.external_id:
        return f"{identity.name} ({identity.external_id})"
    return identity.name
