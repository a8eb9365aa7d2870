"""
API request and response models for the ClassSite auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON uses camelCase (fullName, isVerified, ...) to match the browser client;
Python attribute names stay snake_case via an alias generator. Request models
accept either spelling.

Request fields are Optional wherever the flow itself reports a missing value:
the service raises ValidationError with a message that names the field, which
reads better than pydantic's generic "field required".
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AdminUserChanges, NewAccount, ProfileChanges, User, VerificationPurpose
from auth.validators import format_phone_for_display

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)
# Passwords are taken verbatim (no whitespace stripping). bcrypt ignores
# everything past 72 bytes; 128 chars keeps request bodies sane.
_Password = Annotated[Optional[str], Field(max_length=128)]

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. login is a phone or an email."""

    model_config = _CAMEL

    login: Optional[str] = Field(default=None, max_length=255)
    password: _Password = None


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register and POST /api/v1/users."""

    model_config = _CAMEL

    full_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    password: _Password = None
    role: Optional[str] = Field(default=None, max_length=20)

    def to_account(self) -> NewAccount:
        return NewAccount(
            full_name=self.full_name,
            password=self.password,
            phone=self.phone or None,
            email=self.email or None,
            role=self.role or None,
        )


class InitAdminRequest(BaseModel):
    """Request body for POST /api/v1/auth/init-admin."""

    model_config = _CAMEL

    full_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    password: _Password = None

    def to_account(self) -> NewAccount:
        return NewAccount(
            full_name=self.full_name,
            password=self.password,
            phone=self.phone or None,
            email=self.email or None,
        )


class ProfileUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/auth/profile. Omitted fields stay unchanged."""

    model_config = _CAMEL

    full_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    current_password: _Password = None
    new_password: _Password = None

    def to_changes(self) -> ProfileChanges:
        return ProfileChanges(
            full_name=self.full_name,
            phone=self.phone,
            email=self.email,
            current_password=self.current_password,
            new_password=self.new_password,
        )


class UserUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/users/{id}. An empty phone or email clears it."""

    model_config = _CAMEL

    full_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    password: _Password = None
    role: Optional[str] = Field(default=None, max_length=20)
    is_active: Optional[bool] = None

    def to_changes(self) -> AdminUserChanges:
        return AdminUserChanges(
            full_name=self.full_name,
            phone=self.phone,
            email=self.email,
            password=self.password,
            role=self.role,
            is_active=self.is_active,
        )


class PhoneRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = _CAMEL

    phone: Optional[str] = Field(default=None, max_length=32)


class PhoneCodeRequest(BaseModel):
    """Phone plus a received code."""

    model_config = _CAMEL

    phone: Optional[str] = Field(default=None, max_length=32)
    code: Optional[str] = Field(default=None, max_length=12)


class VerificationRequest(PhoneRequest):
    """Request body for POST /auth/verify. type picks the code purpose."""

    purpose: VerificationPurpose = Field(default=VerificationPurpose.PHONE_VERIFICATION, alias="type")


class VerificationConfirmRequest(PhoneCodeRequest):
    purpose: VerificationPurpose = Field(default=VerificationPurpose.PHONE_VERIFICATION, alias="type")


class PasswordResetConfirmRequest(BaseModel):
    """Request body for PUT /auth/reset-password."""

    model_config = _CAMEL

    phone: Optional[str] = Field(default=None, max_length=32)
    code: Optional[str] = Field(default=None, max_length=12)
    new_password: _Password = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    """Public view of a user. The password hash is never part of it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    full_name: str
    phone: Optional[str]
    phone_display: Optional[str] = None
    email: Optional[str]
    role: str
    is_active: bool
    is_verified: bool
    created_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        """Factory Method -- the domain-to-transport mapping lives with the output model."""
        return cls(
            id=user.id,
            full_name=user.full_name,
            phone=user.phone,
            phone_display=format_phone_for_display(user.phone) if user.phone else None,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            is_verified=user.is_verified,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class UserResponse(BaseModel):
    model_config = _CAMEL

    user: UserView
    message: Optional[str] = None


class LoginResponse(BaseModel):
    """Response body for POST /auth/login and POST /auth/refresh."""

    model_config = _CAMEL

    message: str
    user: UserView
    token: str


class MessageResponse(BaseModel):
    """Generic acknowledgement. code is only present when code echoing is enabled."""

    model_config = _CAMEL

    message: str
    code: Optional[str] = None


class Pagination(BaseModel):
    model_config = _CAMEL

    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(BaseModel):
    model_config = _CAMEL

    users: list[UserView]
    pagination: Pagination


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx: {"error": message, "code": code}."""

    model_config = ConfigDict(frozen=True)

    error: str
    code: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
