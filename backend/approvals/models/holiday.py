from __future__ import annotations

import datetime

import sqlalchemy as sa
from sqlmodel import Field

from approvals.models.base import IntIDBase


class Holiday(IntIDBase, table=True):
    """A company holiday; optionally excluded from leave day counts."""

    __tablename__ = "holiday"
    __table_args__ = (sa.UniqueConstraint("date", name="uq_holiday_date"),)

    date: datetime.date
    description: str = Field(max_length=255)
