"""
auth/errors.py -- Exception taxonomy for the auth subsystem.

Every failure a caller can see is an AuthError subclass carrying its HTTP
status and a machine-readable code. api/main.py registers one exception
handler for AuthError that renders {"error": message, "code": code}; anything
else that escapes a route is logged and rendered as a generic 500.

Layer rule: no imports from api/. The status codes are data, not FastAPI.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all expected auth failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class InvalidCredentials(AuthError):
    """Raised for both "no such user" and "wrong password" -- never distinguish them."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid login or password."


class InvalidOrExpiredCode(AuthError):
    status_code = 400
    code = "invalid_code"
    default_message = "Invalid or expired verification code."


class Unauthenticated(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "User not found."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "A user with this phone or email already exists."
