"""
auth/dependencies.py -- FastAPI Depends() helpers that build a RequestContext.

Two ways to present an access token, checked in priority order:
  1. "token" cookie -- set by the login / refresh endpoints.
  2. Authorization: Bearer <token> header -- API clients and mobile apps.

The token only proves who the caller is. The role used for authorization is
re-read from the store on every request, so demotion or deactivation takes
effect immediately rather than when the 24h token expires.

request_context() is the soft variant (anonymous context on failure).
authenticated_context() wraps it and raises Unauthenticated if no identity.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the dependency injection system; nothing else under auth/ does.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthenticated
from auth.models import RequestContext
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_ip(request: Request) -> str:
    """Best-effort client address: X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def access_token_from(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def refresh_token_from(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE) or None


def request_context(request: Request) -> RequestContext:
    """Return the caller's context. Never raises -- unknown callers are anonymous."""
    service = get_auth_service(request)
    ctx = RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent", "unknown"),
    )
    identity = service.tokens.verify_access_token(access_token_from(request))
    if identity is None:
        return ctx
    user = service.store.get_by_id(identity.user_id)
    if user is None:
        # Validly signed token for a deleted account: keep the id with no role,
        # so profile lookups answer 404 and every role check fails.
        ctx.user_id = identity.user_id
        return ctx
    if not user.is_active:
        return ctx
    ctx.user_id = user.id
    ctx.role = user.role
    return ctx


def authenticated_context(request: Request) -> RequestContext:
    """Require a valid access token. Raises Unauthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: RequestContext = Depends(authenticated_context)): ...
    """
    ctx = request_context(request)
    if ctx.user_id is None:
        raise Unauthenticated()
    return ctx
