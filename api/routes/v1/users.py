"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET    /api/v1/users        -- paginated list with search and role filter (TEACHER+)
  POST   /api/v1/users        -- create a user (TEACHER+; ADMIN accounts need an ADMIN)
  GET    /api/v1/users/{id}   -- one user (TEACHER+)
  PUT    /api/v1/users/{id}   -- partial update (TEACHER+; role changes need an ADMIN)
  DELETE /api/v1/users/{id}   -- delete with sessions, codes and login history (ADMIN)

Authentication is enforced here (authenticated_context -> 401); the role
checks live in AuthService so every caller of the service gets them.
"""

from __future__ import annotations

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.models import (
    MessageResponse,
    Pagination,
    RegisterRequest,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
    UserView,
)
from auth.dependencies import authenticated_context, get_auth_service
from auth.models import RequestContext
from auth.service import AuthService

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
def list_users(
    search: Optional[str] = Query(default=None, max_length=100),
    role: Optional[str] = Query(default=None, max_length=20),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserListResponse:
    """List users newest first. search matches name, phone or email."""
    users, total = service.list_users(ctx, search=search, role=role, page=page, limit=limit)
    return UserListResponse(
        users=[UserView.from_user(u) for u in users],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: RegisterRequest,
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    user = service.create_user(ctx, body.to_account())
    return UserResponse(message="User created.", user=UserView.from_user(user))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    return UserResponse(user=UserView.from_user(service.get_user(ctx, user_id)))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    body: UserUpdateRequest,
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Apply the fields present in the body. An empty phone or email removes it."""
    user = service.update_user(ctx, user_id, body.to_changes())
    return UserResponse(message="User updated.", user=UserView.from_user(user))


@router.delete("/users/{user_id}", response_model=MessageResponse, response_model_exclude_none=True)
def delete_user(
    user_id: int,
    ctx: RequestContext = Depends(authenticated_context),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.delete_user(ctx, user_id)
    return MessageResponse(message="User deleted.")
