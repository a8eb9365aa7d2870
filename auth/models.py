"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, the managers and the routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    PARENT = "PARENT"
    STUDENT = "STUDENT"


class VerificationPurpose(str, Enum):
    PHONE_VERIFICATION = "PHONE_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    TWO_FACTOR_AUTH = "TWO_FACTOR_AUTH"


@dataclass
class User:
    """Represents a ClassSite account (pupil, parent, teacher or admin).

    phone is stored normalized (11 digits, leading 7) and email lower-cased,
    so lookups and UNIQUE constraints compare canonical values. At least one
    of the two is present -- the service layer checks this before insert.

    password_hash is a bcrypt hash and must never leave the service layer;
    api/models.UserView is the only outward representation.
    """

    full_name: str
    password_hash: str
    role: str = Role.STUDENT.value
    id: int | None = None
    phone: str | None = None
    email: str | None = None
    is_active: bool = True
    is_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None


@dataclass
class Session:
    """One issued refresh token. Logout deletes the row by token value."""

    user_id: int
    refresh_token: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class VerificationCode:
    """A one-time numeric code bound to a user and a purpose.

    Pending while used_at is None and expires_at is in the future. Redeemed is
    terminal (used_at set). Expired is not stored anywhere -- it is the
    query-time predicate expires_at <= now.
    """

    user_id: int
    code: str
    purpose: str
    expires_at: str
    id: int | None = None
    used_at: str | None = None
    created_at: str | None = None


@dataclass
class LoginAttempt:
    """Append-only audit row. user_id is None when the login matched nobody."""

    success: bool
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class UserUpdate:
    """Explicit partial update for a User.

    Every field defaults to None meaning "leave unchanged". Values must already
    be validated and normalized; AuthStore.update_user() applies them verbatim.
    clear_phone / clear_email distinguish "remove the value" from "untouched".
    """

    full_name: str | None = None
    phone: str | None = None
    email: str | None = None
    password_hash: str | None = None
    role: str | None = None
    is_active: bool | None = None
    is_verified: bool | None = None
    clear_phone: bool = False
    clear_email: bool = False

    def changes(self) -> dict:
        """Return the column -> value mapping for the fields that are set."""
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("clear_phone", "clear_email") and getattr(self, f.name) is not None
        }
        if self.clear_phone:
            values["phone"] = None
        if self.clear_email:
            values["email"] = None
        return values


@dataclass
class RequestContext:
    """Per-request information threaded explicitly into AuthService calls."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"
    user_id: int | None = None
    role: str | None = None


@dataclass
class NewAccount:
    """Raw registration / account-creation input, before validation."""

    full_name: str | None
    password: str | None
    phone: str | None = None
    email: str | None = None
    role: str | None = None


@dataclass
class ProfileChanges:
    """Self-service profile edit. None means "not supplied"."""

    full_name: str | None = None
    phone: str | None = None
    email: str | None = None
    current_password: str | None = None
    new_password: str | None = None


@dataclass
class AdminUserChanges:
    """Edit of another user's account by a teacher or admin.

    An empty string for phone or email clears the value; None leaves it alone.
    """

    full_name: str | None = None
    phone: str | None = None
    email: str | None = None
    password: str | None = None
    role: str | None = None
    is_active: bool | None = None
