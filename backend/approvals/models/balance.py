from __future__ import annotations

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


def _now_utc() -> datetime:
    return datetime.now(UTC)


class BalanceAccount(SQLModel, table=True):
    """Current quota for one user and resource class; mutated only by ledger debits."""

    __tablename__ = "balance_account"
    __table_args__ = (
        sa.PrimaryKeyConstraint("user_id", "resource_class"),
        sa.CheckConstraint("remaining >= 0", name="ck_balance_remaining_non_negative"),
    )

    user_id: int = Field(index=True)
    resource_class: str = Field(max_length=30)
    total: float = Field(default=0, sa_column_kwargs={"server_default": "0"})
    used: float = Field(default=0, sa_column_kwargs={"server_default": "0"})
    remaining: float = Field(default=0, sa_column_kwargs={"server_default": "0"})
    updated_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=_now_utc,
        sa_type=sa.DateTime(timezone=True),
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": sa.func.now()},
    )
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
