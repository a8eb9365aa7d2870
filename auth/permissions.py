"""
auth/permissions.py -- Role hierarchy.

Roles form a total order: ADMIN > TEACHER > PARENT > STUDENT. A caller may act
where the required role is at or below its own. Unknown roles rank 0 and are
never granted anything.
"""

from __future__ import annotations

from auth.models import Role

ROLE_RANKS: dict[str, int] = {
    Role.ADMIN.value: 4,
    Role.TEACHER.value: 3,
    Role.PARENT.value: 2,
    Role.STUDENT.value: 1,
}


def role_rank(role: str | Role | None) -> int:
    if isinstance(role, Role):
        role = role.value
    return ROLE_RANKS.get(role or "", 0)


def has_permission(actual_role: str | Role | None, required_role: str | Role) -> bool:
    rank = role_rank(actual_role)
    return rank > 0 and rank >= role_rank(required_role)


def is_known_role(role: str | None) -> bool:
    return role in ROLE_RANKS
