from __future__ import annotations

from fastapi import APIRouter

from approvals.api.deps import AdminDep, AuthDep
from approvals.exceptions import NotFoundError
from approvals.schemas.employee import EmployeeListResponse, EmployeeResponse, UpsertEmployeeRequest
from approvals.services.employee import EmployeeInfo, get_employee_service

employees_router = APIRouter(prefix="/employees", tags=["employees"])


def _build_employee_response(employee: EmployeeInfo) -> EmployeeResponse:
    return EmployeeResponse(
        id=employee.id,
        name=employee.name,
        email=employee.email,
        role=employee.role,
        grade_id=employee.effective_grade,
    )


@employees_router.put(
    "/{user_id}",
    response_model=EmployeeResponse,
)
async def upsert_employee(
    user_id: int,
    payload: UpsertEmployeeRequest,
    auth: AdminDep,
) -> EmployeeResponse:
    """Create or update an employee in the stub directory (admin only)."""
    svc = get_employee_service()
    employee = EmployeeInfo(
        id=user_id,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        grade_id=payload.grade_id,
    )
    svc.seed(employee)  # ty: ignore[unresolved-attribute]
    return _build_employee_response(employee)


@employees_router.get(
    "/{user_id}",
    response_model=EmployeeResponse,
)
async def get_employee(
    user_id: int,
    auth: AuthDep,
) -> EmployeeResponse:
    """Get employee info from the directory."""
    employee = await get_employee_service().get_employee(user_id)
    if employee is None:
        raise NotFoundError("Employee not found")
    return _build_employee_response(employee)


@employees_router.get(
    "",
    response_model=EmployeeListResponse,
)
async def list_employees(
    auth: AuthDep,
) -> EmployeeListResponse:
    """List all employees in the directory."""
    employees = await get_employee_service().list_employees()
    items = [_build_employee_response(e) for e in employees]
    return EmployeeListResponse(items=items, total=len(items))
