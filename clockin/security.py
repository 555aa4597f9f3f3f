from __future__ import annotations

from fastapi import Depends, Header, Request

from clockin.errors import ApiError, PermissionDenied
from clockin.models import UserRole


def require_user(
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise ApiError(status_code=401, code="UNAUTHENTICATED", message="Missing X-User-Id header.")
    request.state.actor = "employee"
    request.state.actor_id = user_id
    return user_id


def require_admin(
    request: Request,
    user_id: str = Depends(require_user),
    x_user_role: str | None = Header(default=None),
) -> str:
    if (x_user_role or "").strip().lower() != UserRole.ADMIN.value:
        raise PermissionDenied("Admin role required.")
    request.state.actor = "admin"
    return user_id
