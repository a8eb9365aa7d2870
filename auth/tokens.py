"""
auth/tokens.py -- Password hashing, JWT access tokens and refresh sessions.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY and
       carry user_id, full_name, role and expiry (24h by default). They are
       stateless -- nothing is persisted, so an access token cannot be revoked
       before it expires. Verification returns None on any failure; the route
       layer turns that into a 401.

  Refresh tokens: secrets.token_hex(32) (256 bits of entropy), persisted as a
       Session row with a 7-day expiry. Logout deletes the row, which ends the
       session immediately even though the access token lives on until expiry.

  Passwords: bcrypt with a fixed work factor of 12. The _DUMMY_HASH constant
       enables timing equalization in check_credentials() so response time
       does not reveal whether a login identifier exists [C1].

  Configuration is passed in: TokenManager receives the Settings instance from
       the ASGI lifespan. Nothing here reads the environment.

Layer rule: no imports from api/. Starlette responses are only duck-typed
(set_cookie / delete_cookie) in the cookie helpers.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Session, User
from auth.store import to_iso

if TYPE_CHECKING:
    from auth.store import AuthStore
    from core.config import Settings

logger = logging.getLogger("classsite.auth")

_ALGORITHM = "HS256"

BCRYPT_ROUNDS = 12

ACCESS_COOKIE = "token"
REFRESH_COOKIE = "refreshToken"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. The API layer caps passwords at
    128 characters; anything beyond byte 72 does not add strength.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("classsite_timing_dummy")


def check_credentials(user: User | None, password: str) -> bool:
    """Return True if user exists and password matches its hash.

    Always runs bcrypt, even when user is None, so "unknown login" and
    "wrong password" take the same time [C1].
    """
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, user.password_hash)


# ---------------------------------------------------------------------------
# Token manager
# ---------------------------------------------------------------------------


@dataclass
class TokenIdentity:
    """What a valid access token proves about its bearer."""

    user_id: int
    role: str
    full_name: str = ""


class TokenManager:
    """Issues and checks access tokens; issues, rotates and revokes refresh sessions."""

    def __init__(self, settings: Settings, store: AuthStore) -> None:
        self._settings = settings
        self._store = store

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(seconds=self._settings.access_token_expire_seconds)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self._settings.refresh_token_expire_days)

    # ------------------------------------------------------------------
    # Access tokens (stateless)
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int, full_name: str, role: str) -> str:
        expire = datetime.now(timezone.utc) + self.access_ttl
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "full_name": full_name,
            "role": role,
            "type": "access",
            "exp": expire,
        }
        return jwt.encode(payload, self._settings.secret_key, algorithm=_ALGORITHM)

    def verify_access_token(self, token: str | None) -> TokenIdentity | None:
        """Decode and verify a JWT. Returns None on any failure -- never raises.

        Malformed, expired, wrongly signed and missing tokens all look the
        same to callers: no identity.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._settings.secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != "access" or "user_id" not in payload or "role" not in payload:
            return None
        try:
            user_id = int(payload["user_id"])
        except (TypeError, ValueError):
            return None
        return TokenIdentity(user_id=user_id, role=str(payload["role"]), full_name=payload.get("full_name", ""))

    # ------------------------------------------------------------------
    # Refresh sessions (stateful)
    # ------------------------------------------------------------------

    def _new_session(self, user_id: int) -> Session:
        return Session(
            user_id=user_id,
            refresh_token=secrets.token_hex(32),
            expires_at=to_iso(datetime.now(timezone.utc) + self.refresh_ttl),
        )

    def issue_refresh_session(self, user_id: int) -> str:
        session = self._new_session(user_id)
        self._store.create_session(session)
        return session.refresh_token

    def revoke(self, refresh_token: str | None) -> None:
        """Delete the session for refresh_token. Unknown or empty tokens are ignored."""
        if not refresh_token:
            return
        if self._store.delete_session(refresh_token):
            logger.info("Refresh session revoked")

    def rotate_refresh_session(self, refresh_token: str | None) -> tuple[User, str] | None:
        """Exchange a live refresh token for a new one.

        Returns (user, new_refresh_token), or None when the token is unknown,
        expired, already exchanged, or its owner is inactive.
        """
        if not refresh_token:
            return None
        session = self._store.get_active_session(refresh_token)
        if session is None:
            return None
        user = self._store.get_by_id(session.user_id)
        if user is None or not user.is_active:
            self._store.delete_session(refresh_token)
            return None
        replacement = self._new_session(user.id)
        if not self._store.rotate_session(refresh_token, replacement):
            return None
        return user, replacement.refresh_token

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def set_auth_cookies(self, response, access_token: str, refresh_token: str) -> None:
        """Write both tokens as httpOnly cookies.

        httponly=True: JS cannot read the cookies (XSS mitigation).
        samesite="strict": never sent on cross-site requests (CSRF mitigation).
        secure: HTTPS only in production or when SECURE_COOKIES=true.
        max_age: matches the token / session lifetime.
        """
        response.set_cookie(
            ACCESS_COOKIE,
            value=access_token,
            httponly=True,
            samesite="strict",
            secure=self._settings.cookie_secure,
            max_age=int(self.access_ttl.total_seconds()),
        )
        response.set_cookie(
            REFRESH_COOKIE,
            value=refresh_token,
            httponly=True,
            samesite="strict",
            secure=self._settings.cookie_secure,
            max_age=int(self.refresh_ttl.total_seconds()),
        )

    def clear_auth_cookies(self, response) -> None:
        for name in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(name, httponly=True, samesite="strict", secure=self._settings.cookie_secure)
