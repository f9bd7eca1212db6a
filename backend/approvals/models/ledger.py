from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from approvals.models.base import IntIDBase


def _now_utc() -> datetime:
    return datetime.now(UTC)


class LedgerEntry(IntIDBase, table=True):
    """Append-only ledger entry that records every balance-affecting event."""

    __tablename__ = "ledger_entry"
    __table_args__ = (
        sa.Index("ix_ledger_user_resource", "user_id", "resource_class"),
        sa.UniqueConstraint("source_type", "source_id", "entry_type", name="uq_ledger_idempotency"),
    )

    user_id: int = Field(index=True)
    resource_class: str = Field(max_length=30)
    entry_type: str = Field(max_length=30)
    amount: float
    source_type: str = Field(max_length=30)
    source_id: str = Field(max_length=255)
    metadata_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    created_at: datetime = Field(
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
