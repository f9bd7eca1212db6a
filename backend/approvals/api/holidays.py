# ruff: noqa: TC001
from __future__ import annotations

from fastapi import APIRouter, Query, status

from approvals.api.deps import AdminDep, AuthDep
from approvals.db import SessionDep
from approvals.schemas.holiday import CreateHolidayRequest, HolidayListResponse, HolidayResponse
from approvals.services import holiday as holiday_service

holidays_router = APIRouter(
    prefix="/admin/holidays",
    tags=["holidays"],
)


@holidays_router.post(
    "",
    response_model=HolidayResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_holiday(
    payload: CreateHolidayRequest,
    session: SessionDep,
    auth: AdminDep,
) -> HolidayResponse:
    """Create a holiday (admin only)."""
    return await holiday_service.create_holiday(session, auth, payload)


@holidays_router.get(
    "",
    response_model=HolidayListResponse,
)
async def list_holidays(
    session: SessionDep,
    auth: AuthDep,
    year: int | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> HolidayListResponse:
    """List holidays with optional year filter."""
    return await holiday_service.list_holidays(session, year, offset, limit)


@holidays_router.delete(
    "/{holiday_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_holiday(
    holiday_id: int,
    session: SessionDep,
    auth: AdminDep,
) -> None:
    """Delete a holiday (admin only)."""
    await holiday_service.delete_holiday(session, auth, holiday_id)
