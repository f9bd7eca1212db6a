from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from approvals.models.enums import UserRole

# Approval tiers. A higher grade may act on anything a lower grade may.
GRADE_EMPLOYEE = 1
GRADE_MANAGER = 2
GRADE_ADMIN = 3

DEFAULT_ROLE_GRADES: dict[UserRole, int] = {
    UserRole.EMPLOYEE: GRADE_EMPLOYEE,
    UserRole.MANAGER: GRADE_MANAGER,
    UserRole.ADMIN: GRADE_ADMIN,
}


class EmployeeInfo(BaseModel):
    """Employee metadata from the Employee Service."""

    id: int
    name: str
    email: str | None = None
    role: UserRole = UserRole.EMPLOYEE
    grade_id: int | None = None

    @property
    def effective_grade(self) -> int:
        return self.grade_id if self.grade_id is not None else DEFAULT_ROLE_GRADES[self.role]


@runtime_checkable
class EmployeeService(Protocol):
    """Interface for the Employee Service."""

    async def get_employee(self, user_id: int) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        ...

    async def list_employees(self) -> list[EmployeeInfo]:
        """List all known employees."""
        ...


class InMemoryEmployeeService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._employees: dict[int, EmployeeInfo] = {}

    def seed(self, employee: EmployeeInfo) -> None:
        """Seed an employee for testing."""
        self._employees[employee.id] = employee

    def clear(self) -> None:
        self._employees.clear()

    async def get_employee(self, user_id: int) -> EmployeeInfo | None:
        """Fetch employee metadata. Returns None if not found."""
        return self._employees.get(user_id)

    async def list_employees(self) -> list[EmployeeInfo]:
        """List all known employees."""
        return sorted(self._employees.values(), key=lambda e: e.id)


_employee_service: EmployeeService = InMemoryEmployeeService()


def get_employee_service() -> EmployeeService:
    """FastAPI dependency for the Employee Service."""
    return _employee_service


def set_employee_service(service: EmployeeService) -> None:
    """Override the service (for testing or production wiring)."""
    global _employee_service
    _employee_service = service
