# ruff: noqa: TC003
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from approvals.models.enums import RequestType


class StatusDistributionResponse(BaseModel):
    """Request counts per status."""

    total_requests: int
    pending: int
    approved: int
    auto_approved: int
    rejected: int
    auto_rejected: int
    cancelled: int


class RequestTypeSummary(BaseModel):
    """Automation statistics for one request type."""

    request_type: RequestType
    total_requests: int
    auto_approved: int
    auto_rejected: int
    auto_approved_percentage: float


class RequestsByTypeResponse(BaseModel):
    """Automation statistics for every request type."""

    items: list[RequestTypeSummary]


class AuditLogEntryResponse(BaseModel):
    """Response schema for a single audit log entry."""

    id: int
    actor_id: int | None
    entity_type: str
    entity_id: int
    action: str
    before_json: dict[str, Any] | None
    after_json: dict[str, Any] | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated list of audit log entries."""

    items: list[AuditLogEntryResponse]
    total: int
