from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from approvals.models.base import IntIDBase, TimestampMixin


class ApprovalRule(IntIDBase, TimestampMixin, table=True):
    """Condition -> action rule, evaluated in ascending (priority, id) order.

    ``condition_json`` always holds the canonical tagged form produced by
    ``approvals.schemas.rule.parse_condition``.
    """

    __tablename__ = "approval_rule"
    __table_args__ = (sa.Index("ix_rule_type_active_priority", "request_type", "is_active", "priority"),)

    request_type: str = Field(max_length=20)
    condition_json: dict[str, Any] = Field(default_factory=dict, sa_type=sa.JSON)
    action: str = Field(max_length=30)
    priority: int = Field(default=1)
    is_active: bool = Field(default=True, sa_column_kwargs={"server_default": sa.true()})
    grade_id: int | None = None
    approver_grade_id: int | None = None
    description: str | None = Field(default=None, max_length=500)
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
