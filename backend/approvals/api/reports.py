# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from approvals.api.deps import AdminDep, ApproverDep
from approvals.db import SessionDep
from approvals.schemas.report import AuditLogListResponse, RequestsByTypeResponse, StatusDistributionResponse
from approvals.services import report as report_service

reports_router = APIRouter(tags=["reports"])


@reports_router.get(
    "/reports/status-distribution",
    response_model=StatusDistributionResponse,
)
async def get_status_distribution(
    session: SessionDep,
    auth: ApproverDep,
) -> StatusDistributionResponse:
    """Request counts per status."""
    return await report_service.status_distribution(session)


@reports_router.get(
    "/reports/requests-by-type",
    response_model=RequestsByTypeResponse,
)
async def get_requests_by_type(
    session: SessionDep,
    auth: ApproverDep,
) -> RequestsByTypeResponse:
    """Automation statistics per request type."""
    return await report_service.requests_by_type(session)


@reports_router.get(
    "/admin/audit-log",
    response_model=AuditLogListResponse,
)
async def query_audit_log(
    session: SessionDep,
    auth: AdminDep,
    entity_type: str | None = Query(default=None),
    entity_id: int | None = Query(default=None),
    action: str | None = Query(default=None),
    actor_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> AuditLogListResponse:
    """Query audit log entries with optional filters (admin only)."""
    return await report_service.query_audit_log(
        session,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        start_date=start_date,
        end_date=end_date,
        offset=offset,
        limit=limit,
    )
