# ruff: noqa: B008, TC001
from __future__ import annotations

from fastapi import APIRouter, Query

from approvals.api.deps import AuthDep
from approvals.db import SessionDep
from approvals.exceptions import ForbiddenError
from approvals.models.enums import ResourceClass
from approvals.schemas.auth import AuthContext
from approvals.schemas.balance import LedgerListResponse, UnifiedBalanceResponse
from approvals.services import ledger as ledger_service

balances_router = APIRouter(prefix="/balances", tags=["balances"])


def _resolve_user(auth: AuthContext, user_id: int | None) -> int:
    """Employees see their own balances; managers and admins may look up anyone."""
    if user_id is None or user_id == auth.user_id:
        return auth.user_id
    if not auth.can_approve:
        raise ForbiddenError("Not authorized to view another user's balances")
    return user_id


@balances_router.get("", response_model=UnifiedBalanceResponse)
async def get_balances(
    session: SessionDep,
    auth: AuthDep,
    user_id: int | None = Query(default=None),
) -> UnifiedBalanceResponse:
    """Leave, expense and discount balances in one view."""
    return await ledger_service.get_unified_balances(session, _resolve_user(auth, user_id))


@balances_router.get("/ledger", response_model=LedgerListResponse)
async def get_ledger(
    session: SessionDep,
    auth: AuthDep,
    user_id: int | None = Query(default=None),
    resource_class: ResourceClass | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> LedgerListResponse:
    """Paginated ledger entries (allocations and debits)."""
    return await ledger_service.list_ledger_entries(
        session, _resolve_user(auth, user_id), resource_class, offset, limit
    )
