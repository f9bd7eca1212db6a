# ruff: noqa: B008
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from approvals.exceptions import ForbiddenError, ValidationError
from approvals.models.enums import UserRole
from approvals.schemas.auth import AuthContext


async def get_auth_context(
    x_user_id: int = Header(),
    x_role: str = Header(default="employee"),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    try:
        role = UserRole(x_role.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role: {x_role}") from None
    return AuthContext(user_id=x_user_id, role=role)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if not auth.is_admin:
        raise ForbiddenError("Admin access required")
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]


async def require_approver(
    auth: AuthDep,
) -> AuthContext:
    """Require manager or admin role for the request."""
    if not auth.can_approve:
        raise ForbiddenError("Manager or admin access required")
    return auth


ApproverDep = Annotated[AuthContext, Depends(require_approver)]
