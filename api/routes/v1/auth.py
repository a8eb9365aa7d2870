"""
api/routes/v1/auth.py -- Session, registration, profile and code endpoints.

Routes:
  POST /api/v1/auth/login           -- password login; sets token + refreshToken cookies
  POST /api/v1/auth/logout          -- revokes the refresh session, clears cookies; always 200
  POST /api/v1/auth/refresh         -- rotates the refresh session, issues a new access token
  POST /api/v1/auth/register        -- self-registration (STUDENT or PARENT); 201
  GET  /api/v1/auth/profile         -- current user (requires auth)
  PUT  /api/v1/auth/profile         -- update own name/phone/email/password (requires auth)
  POST /api/v1/auth/verify          -- send a phone verification (or two-factor) code
  PUT  /api/v1/auth/verify          -- confirm the phone (or a two-factor code) with a code
  POST /api/v1/auth/reset-password  -- send a password reset code
  PUT  /api/v1/auth/reset-password  -- set a new password with a code
  POST /api/v1/auth/init-admin      -- create the first administrator; 201

Handlers stay thin: parse the body, call AuthService, shape the response.
Every failure is an AuthError raised by the service and rendered by the
handler in api/main.py.

Security:
  [H2] Login is rate-limited per IP; code requests (which send SMS) too.
  [C1] Unknown login and wrong password produce the same 401 body.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import CODE_LIMIT, LOGIN_LIMIT, limiter
from api.models import (
    InitAdminRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordResetConfirmRequest,
    PhoneRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    UserResponse,
    UserView,
    VerificationConfirmRequest,
    VerificationRequest,
)
from auth.dependencies import authenticated_context, get_auth_service, refresh_token_from, request_context
from auth.models import RequestContext, VerificationPurpose
from auth.service import AuthService, CodeIssueResult, LoginResult

# Auth policy:
# - login, logout, refresh, register, verify, reset-password: public
# - init-admin: public, but refused (409) once an administrator exists
# - profile GET/PUT: requires a valid access token (authenticated_context)
router = APIRouter()


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    ctx: RequestContext = Depends(request_context),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with a phone number or email plus password.

    On success both cookies are set and the access token is also returned in
    the body for clients that prefer the Authorization header.
    """
    result = service.login(body.login, body.password, ctx)
    return _session_response(service, result, "Login successful.")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Revoke the refresh session (if any) and clear both cookies. Never fails."""
    service.logout(refresh_token_from(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(exclude_none=True))
    service.tokens.clear_auth_cookies(resp)
    return resp


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Exchange the refreshToken cookie for a new access token and a new refresh token.

    The old refresh token stops working immediately (rotation).
    """
    result = service.refresh(refresh_token_from(request))
    return _session_response(service, result, "Session refreshed.")


# ---------------------------------------------------------------------------
# Registration and profile
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Create an unverified account. The caller logs in separately."""
    user = service.register(body.to_account())
    return UserResponse(message="User created.", user=UserView.from_user(user))


@router.post("/auth/init-admin", response_model=UserResponse, status_code=201)
def init_admin(body: InitAdminRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Bootstrap the first ADMIN account on a fresh install."""
    user = service.init_admin(body.to_account())
    return UserResponse(message="Administrator created.", user=UserView.from_user(user))


@router.get("/auth/profile", response_model=UserResponse)
def get_profile(
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse(user=UserView.from_user(service.get_profile(ctx)))


@router.put("/auth/profile", response_model=UserResponse)
def update_profile(
    body: ProfileUpdateRequest,
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    user = service.update_profile(ctx, body.to_changes())
    return UserResponse(message="Profile updated.", user=UserView.from_user(user))


# ---------------------------------------------------------------------------
# Verification codes
# ---------------------------------------------------------------------------


@limiter.limit(CODE_LIMIT)
@router.post("/auth/verify", response_model=MessageResponse, response_model_exclude_none=True)
def request_verification(
    request: Request,
    body: VerificationRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a code. type is PHONE_VERIFICATION (default) or TWO_FACTOR_AUTH."""
    return _code_issued(service.request_phone_verification(body.phone, body.purpose))


@router.put("/auth/verify", response_model=MessageResponse, response_model_exclude_none=True)
def confirm_verification(
    body: VerificationConfirmRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.confirm_phone_verification(body.phone, body.code, body.purpose)
    if body.purpose == VerificationPurpose.TWO_FACTOR_AUTH:
        return MessageResponse(message="Code confirmed.")
    return MessageResponse(message="Phone verified.")


@limiter.limit(CODE_LIMIT)
@router.post("/auth/reset-password", response_model=MessageResponse, response_model_exclude_none=True)
def request_password_reset(
    request: Request,
    body: PhoneRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    return _code_issued(service.request_password_reset(body.phone))


@router.put("/auth/reset-password", response_model=MessageResponse, response_model_exclude_none=True)
def confirm_password_reset(
    body: PasswordResetConfirmRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.confirm_password_reset(body.phone, body.code, body.new_password)
    return MessageResponse(message="Password changed.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_response(service: AuthService, result: LoginResult, message: str) -> JSONResponse:
    resp = JSONResponse(
        content=LoginResponse(
            message=message,
            user=UserView.from_user(result.user),
            token=result.access_token,
        ).model_dump(by_alias=True),
    )
    service.tokens.set_auth_cookies(resp, result.access_token, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _code_issued(result: CodeIssueResult) -> MessageResponse:
    # code is None unless echoing is enabled; response_model_exclude_none drops it.
    return MessageResponse(message=result.message, code=result.code)
