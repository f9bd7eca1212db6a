# ruff: noqa: B008, TC001
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query, status

from approvals.api.deps import ApproverDep, AuthDep
from approvals.db import SessionDep
from approvals.models.enums import RequestType
from approvals.schemas.request import RequestListResponse, RequestResponse, parse_decision
from approvals.services import request as request_service
from approvals.services.request import caller_grade

submissions_router = APIRouter(tags=["requests"])

requests_router = APIRouter(prefix="/requests", tags=["requests"])


# Bodies are taken raw so alias keys (fromDate, start_date, ...) reach the normalizer.
@submissions_router.post("/leaves/request", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_leave(
    session: SessionDep,
    auth: AuthDep,
    payload: dict[str, Any] = Body(),
) -> RequestResponse:
    """Submit a leave request."""
    return await request_service.submit_request(session, auth, RequestType.LEAVE, payload)


@submissions_router.post("/expenses/request", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_expense(
    session: SessionDep,
    auth: AuthDep,
    payload: dict[str, Any] = Body(),
) -> RequestResponse:
    """Submit an expense request."""
    return await request_service.submit_request(session, auth, RequestType.EXPENSE, payload)


@submissions_router.post("/discounts/request", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_discount(
    session: SessionDep,
    auth: AuthDep,
    payload: dict[str, Any] = Body(),
) -> RequestResponse:
    """Submit a discount request."""
    return await request_service.submit_request(session, auth, RequestType.DISCOUNT, payload)


@requests_router.get("/my", response_model=RequestListResponse)
async def list_my_requests(
    session: SessionDep,
    auth: AuthDep,
    request_type: RequestType | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List the caller's own requests."""
    return await request_service.list_my_requests(session, auth.user_id, request_type, offset, limit)


@requests_router.get("/pending", response_model=RequestListResponse)
async def list_pending_requests(
    session: SessionDep,
    auth: ApproverDep,
    approver_grade: int | None = Query(default=None, ge=1),
    request_type: RequestType | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> RequestListResponse:
    """List pending requests the approver grade may act on (defaults to the caller's grade)."""
    if approver_grade is None:
        approver_grade = await caller_grade(auth)
    return await request_service.list_pending_requests(session, approver_grade, request_type, offset, limit)


@requests_router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: int,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Get a single request."""
    return await request_service.get_request(session, auth, request_id)


@requests_router.post("/{request_id}/approve", response_model=RequestResponse)
async def approve_request(
    request_id: int,
    session: SessionDep,
    auth: ApproverDep,
    payload: dict[str, Any] | None = Body(default=None),
) -> RequestResponse:
    """Approve a pending request (manager or admin)."""
    decision = parse_decision(payload)
    return await request_service.approve_request(session, auth, request_id, decision)


@requests_router.post("/{request_id}/reject", response_model=RequestResponse)
async def reject_request(
    request_id: int,
    session: SessionDep,
    auth: ApproverDep,
    payload: dict[str, Any] | None = Body(default=None),
) -> RequestResponse:
    """Reject a pending request (manager or admin)."""
    decision = parse_decision(payload)
    return await request_service.reject_request(session, auth, request_id, decision)


@requests_router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: int,
    session: SessionDep,
    auth: AuthDep,
) -> RequestResponse:
    """Cancel one of the caller's own pending requests."""
    return await request_service.cancel_request(session, auth, request_id)
