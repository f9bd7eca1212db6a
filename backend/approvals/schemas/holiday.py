# ruff: noqa: TC003
from __future__ import annotations

import datetime
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

from approvals.schemas.boundary import sanitize_text


class CreateHolidayRequest(BaseModel):
    """Request body for creating a holiday."""

    date: datetime.date
    description: Annotated[str, BeforeValidator(sanitize_text), Field(min_length=1, max_length=255)]


class HolidayResponse(BaseModel):
    """Response schema for a holiday."""

    id: int
    date: datetime.date
    description: str


class HolidayListResponse(BaseModel):
    """Paginated list of holidays."""

    items: list[HolidayResponse]
    total: int
