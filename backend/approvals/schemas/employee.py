from __future__ import annotations

from pydantic import BaseModel, Field

from approvals.models.enums import UserRole


class UpsertEmployeeRequest(BaseModel):
    """Request body for upserting an employee in the stub directory."""

    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.EMPLOYEE
    grade_id: int | None = Field(default=None, ge=1)


class EmployeeResponse(BaseModel):
    """Response schema for an employee."""

    id: int
    name: str
    email: str | None
    role: UserRole
    grade_id: int


class EmployeeListResponse(BaseModel):
    """List of employees."""

    items: list[EmployeeResponse]
    total: int
