# ruff: noqa: TC003
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from approvals.models.enums import LedgerEntryType, LedgerSourceType, LeaveType, ResourceClass

# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class LeaveBalance(BaseModel):
    """Quota for one leave type. ``balance`` is None for unlimited types."""

    leave_type: LeaveType
    total: float | None
    used: float
    balance: float | None
    is_unlimited: bool


class QuotaBalance(BaseModel):
    """Quota for a non-leave pool (expense amount or discount percentage)."""

    total: float
    used: float
    remaining: float


class UnifiedBalanceResponse(BaseModel):
    """Every pool of one user in a single view."""

    user_id: int
    leaves: list[LeaveBalance]
    expenses: QuotaBalance
    discounts: QuotaBalance


# ---------------------------------------------------------------------------
# Ledger response schemas
# ---------------------------------------------------------------------------


class LedgerEntryResponse(BaseModel):
    """A single ledger entry."""

    id: int
    user_id: int
    resource_class: ResourceClass
    entry_type: LedgerEntryType
    amount: float
    source_type: LedgerSourceType
    source_id: str
    metadata_json: dict[str, Any] | None
    created_at: datetime


class LedgerListResponse(BaseModel):
    """Paginated ledger entries."""

    items: list[LedgerEntryResponse]
    total: int
