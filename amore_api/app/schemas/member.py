"""
Pydantic models for roster members.

A member belongs to a boat led by a captain.  The durable table still
stores the group as a single ``"<Boat> (<Captain>)"`` string; it is
split into ``boat_name`` and ``captain_name`` by ``parse_group_key``
when rows are loaded and joined again by ``format_group_key`` when
they are written.  Everywhere else the two names are plain fields.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


NAME_MAX_LENGTH = 64
BIO_MAX_LENGTH = 1024
CITY_MAX_LENGTH = 128
INSTAGRAM_MAX_LENGTH = 64
PHOTO_MAX_LENGTH = 2048

_GROUP_KEY_RE = re.compile(r"^(?P<boat>[^()]+?)\s*\((?P<captain>[^(),]+)\)$")


class MalformedGroupKeyError(ValueError):
    """Raised when a composite group key is not ``"<Boat> (<Captain>)"``."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Malformed group key: {key!r}")
        self.key = key


def normalize_handle(raw: str) -> str:
    """Strip surrounding whitespace and a leading "@", then lowercase."""
    return (raw or "").strip().lstrip("@").lower()


def parse_group_key(key: str) -> tuple[str, str]:
    """Split ``"Salty Kiss (Valera)"`` into ``("Salty Kiss", "Valera")``.

    Exactly one parenthesised, comma-free captain name must close the
    key and the boat name must not be empty.
    """
    match = _GROUP_KEY_RE.match((key or "").strip())
    if not match:
        raise MalformedGroupKeyError(key)
    boat = match.group("boat").strip()
    captain = match.group("captain").strip()
    if not boat or not captain:
        raise MalformedGroupKeyError(key)
    return boat, captain


def format_group_key(boat_name: str, captain_name: str) -> str:
    return f"{boat_name} ({captain_name})"


class Member(BaseModel):
    """In-memory roster record.

    ``handle`` is the Telegram username exactly as imported (it may carry
    a leading "@" or capitals); ``username`` is its normalized form and
    the key of the roster index.  ``etag`` is the concurrency token of
    the stored row this copy was read from.
    """

    handle: str
    boat_name: str
    captain_name: str
    user_id: Optional[int] = None
    chat_id: Optional[int] = None
    real_name: Optional[str] = None
    photo: Optional[str] = None
    photo_file_id: Optional[str] = None
    instagram: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    etag: Optional[str] = None

    @property
    def telegram(self) -> str:
        return self.handle.strip().lstrip("@")

    @property
    def username(self) -> str:
        return normalize_handle(self.handle)

    @property
    def group_key(self) -> str:
        return format_group_key(self.boat_name, self.captain_name)

    @property
    def display_name(self) -> str:
        name = self.real_name or self.telegram
        return f"{name} (@{self.username})" if self.username else name


class MemberRead(BaseModel):
    """Read-only projection returned by the admin API."""

    username: str
    real_name: Optional[str] = None
    boat_name: str
    captain_name: str
    city: Optional[str] = None
    instagram: Optional[str] = None
    bio: Optional[str] = None
    has_photo: bool = False

    @classmethod
    def from_member(cls, member: Member) -> "MemberRead":
        return cls(
            username=member.username,
            real_name=member.real_name,
            boat_name=member.boat_name,
            captain_name=member.captain_name,
            city=member.city,
            instagram=member.instagram,
            bio=member.bio,
            has_photo=bool(member.photo_file_id or member.photo),
        )


class ProfileField(str, Enum):
    """Profile fields a member may edit about themselves."""

    NAME = "name"
    BIO = "bio"
    CITY = "city"
    INSTAGRAM = "instagram"
    PHOTO = "photo"


# field -> (Member attribute, max length)
PROFILE_FIELDS: dict[ProfileField, tuple[str, int]] = {
    ProfileField.NAME: ("real_name", NAME_MAX_LENGTH),
    ProfileField.BIO: ("bio", BIO_MAX_LENGTH),
    ProfileField.CITY: ("city", CITY_MAX_LENGTH),
    ProfileField.INSTAGRAM: ("instagram", INSTAGRAM_MAX_LENGTH),
    ProfileField.PHOTO: ("photo", PHOTO_MAX_LENGTH),
}


class ProfileEdit(BaseModel):
    """A single validated profile edit."""

    field: ProfileField
    value: str = Field(..., description="New value; surrounding whitespace is stripped")

    @model_validator(mode="after")
    def check_value(self) -> "ProfileEdit":
        value = self.value.strip()
        if self.field is ProfileField.INSTAGRAM:
            value = value.lstrip("@")
        if not value:
            raise ValueError(f"{self.field.value} must not be empty")
        _, max_length = PROFILE_FIELDS[self.field]
        if len(value) > max_length:
            raise ValueError(f"{self.field.value} is too long (max {max_length} characters)")
        self.value = value
        return self

    @property
    def attribute(self) -> str:
        return PROFILE_FIELDS[self.field][0]

    @property
    def max_length(self) -> int:
        return PROFILE_FIELDS[self.field][1]


class ProfileOutcome(str, Enum):
    OK = "ok"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    CONFLICT_EXHAUSTED = "conflict_exhausted"
    WRITE_FAILED = "write_failed"
