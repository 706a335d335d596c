"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these types only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """Account role. Members are ordered by rank, not by declaration."""

    banned = "banned"
    guest = "guest"
    user = "user"
    moderator = "moderator"
    admin = "admin"

    @property
    def rank(self) -> int:
        return ROLE_HIERARCHY[self]


# Higher values indicate higher privileges.
ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.banned: -1,
    UserRole.guest: 0,
    UserRole.user: 10,
    UserRole.moderator: 20,
    UserRole.admin: 30,
}


@dataclass
class SafeUser:
    """A user record with the password hash stripped.

    This is what the store hands back from create/update and what the API
    serializes. The hash never leaves the auth package.
    """

    id: str
    name: str
    email: str
    role: UserRole
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


@dataclass
class User:
    """Represents a registered identity.

    password is None for accounts that were created without a local password
    (e.g. provisioned by an administrator for another login method). Such
    accounts can never sign in with email/password.

    deleted_at is the soft-delete marker. Soft-deleted users are invisible to
    find_by_email() and free up their email address for re-registration.
    """

    name: str
    email: str
    role: UserRole = UserRole.user
    id: str | None = None
    password: str | None = None  # bcrypt hash; None = no local password
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def to_safe(self) -> SafeUser:
        return SafeUser(
            id=self.id or "",
            name=self.name,
            email=self.email,
            role=self.role,
            created_at=self.created_at,
            updated_at=self.updated_at,
            deleted_at=self.deleted_at,
        )


@dataclass
class Session:
    """Server-side record backing one refresh token.

    The signed refresh token is self-contained, but the session row is the
    source of truth for liveness: a token is only refreshable while its row
    is valid and unexpired (when a session store is configured).
    """

    user_id: str
    refresh_token: str
    expires_at: datetime
    user_agent: str = "unknown"
    ip_address: str = "unknown"
    is_valid: bool = True
    id: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_usable(self, now: datetime) -> bool:
        return self.is_valid and self.expires_at > now


@dataclass(frozen=True)
class Identity:
    """Minimal caller identity attached to a request by the bearer guard."""

    id: str
    email: str = ""
    role: str | None = None
