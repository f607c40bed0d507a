"""Staff roles.

Role hierarchy: viewer < coordinator < admin. Reads need viewer, writes
coordinator, deletes admin. The role is a single global value per staff
user (staff_users.role).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException

from roomblock.api.auth import StaffUser, get_current_user

ROLE_HIERARCHY = ["viewer", "coordinator", "admin"]


@dataclass
class RoleContext:
    user: StaffUser
    role: str


def _role_level(role: str) -> int:
    try:
        return ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def _get_staff_role(user_id: str) -> str | None:
    from roomblock.infra.db import txn

    with txn() as cur:
        cur.execute("SELECT role FROM staff_users WHERE id = %s", (user_id,))
        row = cur.fetchone()
    return row[0] if row else None


def require_role(min_role: str) -> Callable[..., RoleContext]:
    """Dependency factory enforcing a minimum staff role.

    Usage:
        @router.delete("/{hotel_id}")
        def endpoint(ctx: RoleContext = Depends(require_role("admin"))):
            ...
    """
    min_level = _role_level(min_role)
    if min_level < 0:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(user: StaffUser = Depends(get_current_user)) -> RoleContext:
        role = _get_staff_role(user.id)
        if role is None:
            raise HTTPException(status_code=403, detail="No staff role")
        if _role_level(role) < min_level:
            raise HTTPException(status_code=403, detail="Insufficient role")
        return RoleContext(user=user, role=role)

    return dependency
