from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlmodel import col

from approvals.exceptions import NotFoundError, ValidationError
from approvals.models.enums import AuditAction, AuditEntityType, RequestType, RuleAction
from approvals.models.rule import ApprovalRule
from approvals.schemas.rule import RuleListResponse, RuleResponse, condition_adapter, parse_condition
from approvals.services.audit import model_to_audit_dict, write_audit_log
from approvals.services.evaluator import RuleSnapshot

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from approvals.schemas.auth import AuthContext
    from approvals.schemas.rule import CreateRuleRequest, UpdateRuleRequest

logger = logging.getLogger(__name__)

# Columns an update may not null out.
_REQUIRED_FIELDS = frozenset({"request_type", "action", "priority", "is_active"})


def _build_rule_response(rule: ApprovalRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        request_type=RequestType(rule.request_type),
        condition=rule.condition_json,
        action=RuleAction(rule.action),
        priority=rule.priority,
        is_active=rule.is_active,
        grade_id=rule.grade_id,
        approver_grade_id=rule.approver_grade_id,
        description=rule.description,
        version=rule.version,
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


async def _get_rule_or_404(session: AsyncSession, rule_id: int) -> ApprovalRule:
    result = await session.execute(select(ApprovalRule).where(col(ApprovalRule.id) == rule_id))
    rule = result.scalar_one_or_none()
    if rule is None:
        raise NotFoundError("Rule not found")
    return rule


def _canonical_condition(raw: Any, request_type: RequestType) -> dict[str, Any]:
    return parse_condition(raw, request_type).model_dump(mode="json")


def rule_snapshot(rule: ApprovalRule) -> RuleSnapshot:
    """Freeze a stored rule for evaluation. Raises pydantic's ValidationError on a corrupt condition."""
    return RuleSnapshot(
        id=rule.id,
        request_type=RequestType(rule.request_type),
        condition=condition_adapter.validate_python(rule.condition_json or {"kind": "all"}),
        action=RuleAction(rule.action),
        priority=rule.priority,
        is_active=rule.is_active,
        grade_id=rule.grade_id,
        approver_grade_id=rule.approver_grade_id,
        version=rule.version,
    )


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def load_active_rules(
    session: AsyncSession,
    request_type: RequestType,
    action: RuleAction | None = None,
) -> list[RuleSnapshot]:
    """Read the active rules of one request type with a single SELECT.

    Rows whose stored condition no longer parses are skipped with a warning.
    """
    query = select(ApprovalRule).where(
        col(ApprovalRule.request_type) == request_type.value,
        col(ApprovalRule.is_active).is_(True),
    )
    if action is not None:
        query = query.where(col(ApprovalRule.action) == action.value)
    result = await session.execute(query.order_by(col(ApprovalRule.priority), col(ApprovalRule.id)))

    snapshots: list[RuleSnapshot] = []
    for rule in result.scalars().all():
        try:
            snapshots.append(rule_snapshot(rule))
        except (PydanticValidationError, ValueError):
            logger.warning("Skipping rule %s: stored condition is not evaluable", rule.id)
    return snapshots


async def get_rule(session: AsyncSession, rule_id: int) -> RuleResponse:
    """Fetch a single rule."""
    rule = await _get_rule_or_404(session, rule_id)
    return _build_rule_response(rule)


async def list_rules(
    session: AsyncSession,
    request_type: RequestType | None = None,
    offset: int = 0,
    limit: int = 100,
) -> RuleListResponse:
    """List rules in evaluation order."""
    base_filter = []
    if request_type is not None:
        base_filter.append(col(ApprovalRule.request_type) == request_type.value)

    count_result = await session.execute(select(func.count()).select_from(ApprovalRule).where(*base_filter))
    total = count_result.scalar_one()

    result = await session.execute(
        select(ApprovalRule)
        .where(*base_filter)
        .order_by(col(ApprovalRule.request_type), col(ApprovalRule.priority), col(ApprovalRule.id))
        .offset(offset)
        .limit(limit)
    )
    rules = list(result.scalars().all())
    return RuleListResponse(items=[_build_rule_response(r) for r in rules], total=total)


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


async def create_rule(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateRuleRequest,
) -> RuleResponse:
    """Create a rule; the condition is normalized to its canonical tagged form."""
    rule = ApprovalRule(
        request_type=payload.request_type.value,
        condition_json=_canonical_condition(payload.condition, payload.request_type),
        action=payload.action.value,
        priority=payload.priority,
        is_active=payload.is_active,
        grade_id=payload.grade_id,
        approver_grade_id=payload.approver_grade_id,
        description=payload.description,
    )
    session.add(rule)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.RULE,
        entity_id=rule.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(rule),
    )

    await session.commit()
    await session.refresh(rule)
    logger.info("Rule %s created for %s requests (%s)", rule.id, rule.request_type, rule.action)
    return _build_rule_response(rule)


async def update_rule(
    session: AsyncSession,
    auth: AuthContext,
    rule_id: int,
    payload: UpdateRuleRequest,
) -> RuleResponse:
    """Apply a partial update and bump the rule version."""
    rule = await _get_rule_or_404(session, rule_id)
    before = model_to_audit_dict(rule)

    updates = payload.model_dump(exclude_unset=True)
    for name in _REQUIRED_FIELDS:
        if name in updates and updates[name] is None:
            del updates[name]

    request_type = RequestType(updates.get("request_type", rule.request_type))
    condition_json = None
    if "condition" in updates or request_type.value != rule.request_type:
        raw_condition = updates.pop("condition", rule.condition_json)
        condition_json = _canonical_condition(raw_condition, request_type)

    action = RuleAction(updates.get("action", rule.action))
    approver_grade_id = updates.get("approver_grade_id", rule.approver_grade_id)
    if action is RuleAction.ASSIGN_APPROVER and approver_grade_id is None:
        raise ValidationError("approver_grade_id is required for assign_approver rules")

    if condition_json is not None:
        rule.condition_json = condition_json
    for name, value in updates.items():
        setattr(rule, name, value.value if isinstance(value, (RequestType, RuleAction)) else value)
    rule.version += 1
    rule.updated_at = datetime.now(UTC)
    session.add(rule)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.RULE,
        entity_id=rule.id,
        action=AuditAction.UPDATE,
        before_json=before,
        after_json=model_to_audit_dict(rule),
    )

    await session.commit()
    await session.refresh(rule)
    return _build_rule_response(rule)


async def toggle_rule(
    session: AsyncSession,
    auth: AuthContext,
    rule_id: int,
) -> RuleResponse:
    """Flip ``is_active``; counts as an update for versioning."""
    rule = await _get_rule_or_404(session, rule_id)
    before = model_to_audit_dict(rule)

    rule.is_active = not rule.is_active
    rule.version += 1
    rule.updated_at = datetime.now(UTC)
    session.add(rule)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.RULE,
        entity_id=rule.id,
        action=AuditAction.TOGGLE,
        before_json=before,
        after_json=model_to_audit_dict(rule),
    )

    await session.commit()
    await session.refresh(rule)
    return _build_rule_response(rule)


async def delete_rule(
    session: AsyncSession,
    auth: AuthContext,
    rule_id: int,
) -> None:
    """Delete a rule. Requests keep the id and version of the rule that decided them."""
    rule = await _get_rule_or_404(session, rule_id)

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.RULE,
        entity_id=rule.id,
        action=AuditAction.DELETE,
        before_json=model_to_audit_dict(rule),
    )

    await session.delete(rule)
    await session.commit()
