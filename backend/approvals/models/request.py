from __future__ import annotations

import datetime

import sqlalchemy as sa
from sqlmodel import Field

from approvals.models.base import IntIDBase, TimestampMixin
from approvals.models.enums import RequestStatus


class ApprovalRequest(IntIDBase, TimestampMixin, table=True):
    """A leave, expense or discount request with its approval workflow state.

    Variant payload columns are nullable; which ones are populated depends on
    ``request_type``.
    """

    __tablename__ = "approval_request"
    __table_args__ = (
        sa.Index("ix_request_type_status", "request_type", "status"),
        sa.Index("ix_request_requester_status", "requester_id", "status"),
    )

    request_type: str = Field(max_length=20, index=True)
    requester_id: int = Field(index=True)
    requester_name: str | None = Field(default=None, max_length=255)
    requester_grade_id: int | None = None

    # Leave
    from_date: datetime.date | None = None
    to_date: datetime.date | None = None
    leave_type: str | None = Field(default=None, max_length=20)
    leave_days: float | None = None

    # Expense
    amount: float | None = None
    category: str | None = Field(default=None, max_length=100)

    # Discount
    discount_percentage: float | None = None

    reason: str
    status: str = Field(
        default=RequestStatus.PENDING, max_length=20, index=True, sa_column_kwargs={"server_default": "pending"}
    )
    status_reason: str | None = None
    was_automatic: bool = Field(default=False, sa_column_kwargs={"server_default": sa.false()})

    matched_rule_id: int | None = None
    matched_rule_version: int | None = None
    required_approver_grade_id: int | None = None
    debited_resource_class: str | None = Field(default=None, max_length=30)
    decided_by: int | None = None
    decided_at: datetime.datetime | None = Field(
        default=None,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
