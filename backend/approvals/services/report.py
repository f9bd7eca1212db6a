"""Reporting service: status distribution, automation metrics, and audit log queries."""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from approvals.models.audit import AuditLog
from approvals.models.enums import RequestStatus, RequestType
from approvals.models.request import ApprovalRequest
from approvals.schemas.report import (
    AuditLogEntryResponse,
    AuditLogListResponse,
    RequestsByTypeResponse,
    RequestTypeSummary,
    StatusDistributionResponse,
)

if TYPE_CHECKING:
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession


async def status_distribution(session: AsyncSession) -> StatusDistributionResponse:
    """Count requests per status. The per-status counts sum to ``total_requests``."""
    result = await session.execute(
        select(col(ApprovalRequest.status), func.count()).group_by(col(ApprovalRequest.status))
    )
    counts = {status.value: 0 for status in RequestStatus}
    for status, count in result.all():
        counts[status] = count

    return StatusDistributionResponse(total_requests=sum(counts.values()), **counts)


async def requests_by_type(session: AsyncSession) -> RequestsByTypeResponse:
    """Per request type: total, auto-approved, auto-rejected and the auto-approval rate."""
    result = await session.execute(
        select(col(ApprovalRequest.request_type), col(ApprovalRequest.status), func.count()).group_by(
            col(ApprovalRequest.request_type), col(ApprovalRequest.status)
        )
    )
    totals = {request_type: {"total": 0, "auto_approved": 0, "auto_rejected": 0} for request_type in RequestType}
    for request_type, status, count in result.all():
        bucket = totals[RequestType(request_type)]
        bucket["total"] += count
        if status == RequestStatus.AUTO_APPROVED.value:
            bucket["auto_approved"] += count
        elif status == RequestStatus.AUTO_REJECTED.value:
            bucket["auto_rejected"] += count

    items = []
    for request_type, bucket in totals.items():
        total = bucket["total"]
        percentage = round(bucket["auto_approved"] * 100 / total, 2) if total else 0.0
        items.append(
            RequestTypeSummary(
                request_type=request_type,
                total_requests=total,
                auto_approved=bucket["auto_approved"],
                auto_rejected=bucket["auto_rejected"],
                auto_approved_percentage=percentage,
            )
        )
    return RequestsByTypeResponse(items=items)


async def query_audit_log(
    session: AsyncSession,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    actor_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> AuditLogListResponse:
    """Query audit log entries with optional filters; the date bounds are inclusive UTC days."""
    filters = []

    if entity_type is not None:
        filters.append(col(AuditLog.entity_type) == entity_type)
    if entity_id is not None:
        filters.append(col(AuditLog.entity_id) == entity_id)
    if action is not None:
        filters.append(col(AuditLog.action) == action)
    if actor_id is not None:
        filters.append(col(AuditLog.actor_id) == actor_id)
    if start_date is not None:
        filters.append(col(AuditLog.created_at) >= datetime.combine(start_date, time.min, tzinfo=UTC))
    if end_date is not None:
        day_after = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=UTC)
        filters.append(col(AuditLog.created_at) < day_after)

    count_result = await session.execute(select(func.count()).select_from(AuditLog).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(col(AuditLog.created_at).desc(), col(AuditLog.id).desc())
        .offset(offset)
        .limit(limit)
    )
    entries = list(result.scalars().all())

    return AuditLogListResponse(
        items=[
            AuditLogEntryResponse(
                id=e.id,
                actor_id=e.actor_id,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                action=e.action,
                before_json=e.before_json,
                after_json=e.after_json,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
    )
