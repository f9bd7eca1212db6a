# ruff: noqa: B008, TC001
from __future__ import annotations

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Body, Query, status
from pydantic import ValidationError as PydanticValidationError

from approvals.api.deps import AdminDep
from approvals.db import SessionDep
from approvals.exceptions import ValidationError
from approvals.models.enums import RequestType
from approvals.schemas.request import AutoRejectRunResponse, format_validation_errors
from approvals.schemas.rule import CreateRuleRequest, RuleListResponse, RuleResponse, UpdateRuleRequest
from approvals.services import request as request_service
from approvals.services import rule as rule_service

rules_router = APIRouter(prefix="/admin/rules", tags=["rules"])


def _parse_body(model: type[CreateRuleRequest] | type[UpdateRuleRequest], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc)) from None


@rules_router.get("", response_model=RuleListResponse)
async def list_rules(
    session: SessionDep,
    auth: AdminDep,
    request_type: RequestType | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
) -> RuleListResponse:
    """List approval rules in evaluation order (admin only)."""
    return await rule_service.list_rules(session, request_type, offset, limit)


@rules_router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    session: SessionDep,
    auth: AdminDep,
    payload: dict[str, Any] = Body(),
) -> RuleResponse:
    """Create an approval rule (admin only)."""
    return await rule_service.create_rule(session, auth, _parse_body(CreateRuleRequest, payload))


@rules_router.post("/run-auto-reject", response_model=AutoRejectRunResponse)
async def run_auto_reject(
    session: SessionDep,
    auth: AdminDep,
    older_than_hours: float | None = Query(default=None, ge=0),
) -> AutoRejectRunResponse:
    """Run the auto-reject sweep now (admin only)."""
    older_than = timedelta(hours=older_than_hours) if older_than_hours is not None else None
    result = await request_service.run_auto_reject(session, older_than=older_than)
    return AutoRejectRunResponse(
        cutoff=result.cutoff,
        processed=result.processed,
        rejected=result.rejected,
        skipped=result.skipped,
        errors=result.errors,
    )


@rules_router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: int,
    session: SessionDep,
    auth: AdminDep,
) -> RuleResponse:
    """Get a single approval rule (admin only)."""
    return await rule_service.get_rule(session, rule_id)


@rules_router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: int,
    session: SessionDep,
    auth: AdminDep,
    payload: dict[str, Any] = Body(),
) -> RuleResponse:
    """Update an approval rule; bumps its version (admin only)."""
    return await rule_service.update_rule(session, auth, rule_id, _parse_body(UpdateRuleRequest, payload))


@rules_router.post("/{rule_id}/toggle", response_model=RuleResponse)
async def toggle_rule(
    rule_id: int,
    session: SessionDep,
    auth: AdminDep,
) -> RuleResponse:
    """Activate or deactivate an approval rule (admin only)."""
    return await rule_service.toggle_rule(session, auth, rule_id)


@rules_router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: int,
    session: SessionDep,
    auth: AdminDep,
) -> None:
    """Delete an approval rule (admin only)."""
    await rule_service.delete_rule(session, auth, rule_id)
