from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update
from sqlmodel import col

from approvals.config import get_settings
from approvals.exceptions import (
    AppError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from approvals.models.enums import (
    ACTIVE_LEAVE_STATUSES,
    AuditAction,
    AuditEntityType,
    DecisionOutcome,
    LeaveType,
    RequestStatus,
    RequestType,
    ResourceClass,
    RuleAction,
)
from approvals.models.request import ApprovalRequest
from approvals.schemas.request import (
    LeaveSubmission,
    RequestListResponse,
    RequestResponse,
    parse_submission,
)
from approvals.services import ledger
from approvals.services.audit import model_to_audit_dict, write_audit_log
from approvals.services.employee import DEFAULT_ROLE_GRADES, get_employee_service
from approvals.services.evaluator import Decision, EvaluationSubject, RuleSnapshot, evaluate
from approvals.services.holiday import count_holidays_between
from approvals.services.rule import load_active_rules

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from approvals.schemas.auth import AuthContext
    from approvals.schemas.request import DecisionPayload, SubmissionPayload

logger = logging.getLogger(__name__)


@dataclass
class AutoRejectRunResult:
    """Summary of one auto-reject sweep."""

    cutoff: datetime
    processed: int = 0
    rejected: int = 0
    skipped: int = 0
    errors: int = 0


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: ApprovalRequest) -> RequestResponse:
    """Map a request model to its response schema."""
    return RequestResponse(
        id=request.id,
        request_type=RequestType(request.request_type),
        requester_id=request.requester_id,
        requester_name=request.requester_name,
        from_date=request.from_date,
        to_date=request.to_date,
        leave_type=LeaveType(request.leave_type) if request.leave_type else None,
        leave_days=request.leave_days,
        amount=request.amount,
        category=request.category,
        discount_percentage=request.discount_percentage,
        reason=request.reason,
        status=RequestStatus(request.status),
        status_reason=request.status_reason,
        was_automatic=request.was_automatic,
        matched_rule_id=request.matched_rule_id,
        matched_rule_version=request.matched_rule_version,
        required_approver_grade_id=request.required_approver_grade_id,
        debited_resource_class=request.debited_resource_class,
        decided_by=request.decided_by,
        decided_at=request.decided_at,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


async def _get_request_or_404(session: AsyncSession, request_id: int) -> ApprovalRequest:
    result = await session.execute(select(ApprovalRequest).where(col(ApprovalRequest.id) == request_id))
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Request not found")
    return request


def _request_facts(request: ApprovalRequest) -> dict[str, Any]:
    """Fields a rule condition may reference, omitting the ones this type lacks."""
    facts = {
        "leave_days": request.leave_days,
        "leave_type": request.leave_type,
        "amount": request.amount,
        "category": request.category,
        "discount_percentage": request.discount_percentage,
    }
    return {name: value for name, value in facts.items() if value is not None}


def _evaluation_subject(request: ApprovalRequest) -> EvaluationSubject:
    return EvaluationSubject(
        request_type=RequestType(request.request_type),
        grade_id=request.requester_grade_id,
        facts=_request_facts(request),
    )


def _requested_quantity(request: ApprovalRequest) -> float:
    request_type = RequestType(request.request_type)
    if request_type is RequestType.LEAVE:
        return request.leave_days or 0.0
    if request_type is RequestType.EXPENSE:
        return request.amount or 0.0
    return request.discount_percentage or 0.0


async def caller_grade(auth: AuthContext) -> int:
    """Approval grade of the caller from the directory, else the default for their role."""
    employee = await get_employee_service().get_employee(auth.user_id)
    if employee is not None:
        return employee.effective_grade
    return DEFAULT_ROLE_GRADES[auth.role]


async def _check_leave_overlap(
    session: AsyncSession,
    requester_id: int,
    submission: LeaveSubmission,
) -> None:
    """Raise OverlapError if an active leave of the requester intersects the range (inclusive)."""
    result = await session.execute(
        select(col(ApprovalRequest.id))
        .where(
            col(ApprovalRequest.requester_id) == requester_id,
            col(ApprovalRequest.request_type) == RequestType.LEAVE.value,
            col(ApprovalRequest.status).in_([s.value for s in ACTIVE_LEAVE_STATUSES]),
            col(ApprovalRequest.from_date) <= submission.to_date,
            col(ApprovalRequest.to_date) >= submission.from_date,
        )
        .limit(1)
    )
    if result.scalar_one_or_none() is not None:
        raise OverlapError


async def _count_leave_days(session: AsyncSession, submission: LeaveSubmission) -> float:
    days = submission.inclusive_days
    if get_settings().leave_excludes_holidays:
        days -= await count_holidays_between(session, submission.from_date, submission.to_date)
    if days <= 0:
        raise ValidationError("Leave range contains no countable days")
    return float(days)


async def _remaining_for(session: AsyncSession, request: ApprovalRequest) -> float:
    request_type = RequestType(request.request_type)
    if request_type is RequestType.LEAVE:
        return await ledger.get_effective_leave_remaining(
            session, request.requester_id, LeaveType(request.leave_type), for_update=True
        )
    return await ledger.get_remaining(
        session, request.requester_id, ResourceClass.for_request_type(request_type), for_update=True
    )


async def _debit_for(session: AsyncSession, request: ApprovalRequest) -> None:
    """Debit the requester's pool for ``request``; at most once per request."""
    source_id = str(request.id)
    request_type = RequestType(request.request_type)
    if request_type is RequestType.LEAVE:
        resource_class = await ledger.debit_leave(
            session, request.requester_id, LeaveType(request.leave_type), request.leave_days or 0.0, source_id
        )
    else:
        resource_class = ResourceClass.for_request_type(request_type)
        await ledger.debit(
            session,
            request.requester_id,
            resource_class,
            _requested_quantity(request),
            source_id,
            metadata={"request_type": request_type.value},
        )
    request.debited_resource_class = resource_class.value


async def _claim_pending(session: AsyncSession, request_id: int) -> None:
    """Compare-and-swap guard: only one transition may leave PENDING."""
    result = await session.execute(
        update(ApprovalRequest)
        .where(
            col(ApprovalRequest.id) == request_id,
            col(ApprovalRequest.status) == RequestStatus.PENDING.value,
        )
        .values(updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidStateError("Request is no longer pending")


def _ensure_pending(request: ApprovalRequest, verb: str) -> None:
    if RequestStatus(request.status).is_terminal:
        raise InvalidStateError(f"Only pending requests can be {verb}; request is {request.status}")


def _provenance(verb: str, decision: Decision) -> str:
    return f"Automatically {verb} by rule #{decision.matched_rule_id} (v{decision.matched_rule_version})"


def _stamp_automatic(
    request: ApprovalRequest,
    status: RequestStatus,
    decision: Decision,
    now: datetime,
) -> None:
    verb = "approved" if status is RequestStatus.AUTO_APPROVED else "rejected"
    request.status = status.value
    request.was_automatic = status.is_automatic
    request.status_reason = _provenance(verb, decision)
    request.matched_rule_id = decision.matched_rule_id
    request.matched_rule_version = decision.matched_rule_version
    request.decided_by = None
    request.decided_at = now
    request.updated_at = now


async def _apply_decision(session: AsyncSession, request: ApprovalRequest, decision: Decision) -> None:
    """Write the evaluator's decision onto a freshly created pending request."""
    before = model_to_audit_dict(request)
    now = datetime.now(UTC)

    if decision.outcome is DecisionOutcome.AUTO_APPROVE:
        await _debit_for(session, request)
        _stamp_automatic(request, RequestStatus.AUTO_APPROVED, decision, now)
        audit_action = AuditAction.AUTO_APPROVE
    elif decision.outcome is DecisionOutcome.AUTO_REJECT:
        _stamp_automatic(request, RequestStatus.AUTO_REJECTED, decision, now)
        audit_action = AuditAction.AUTO_REJECT
    else:
        request.required_approver_grade_id = decision.approver_grade_id
        request.matched_rule_id = decision.matched_rule_id
        request.matched_rule_version = decision.matched_rule_version
        session.add(request)
        await session.flush()
        return

    session.add(request)
    await session.flush()
    await write_audit_log(
        session,
        actor_id=None,
        entity_type=AuditEntityType.REQUEST,
        entity_id=request.id,
        action=audit_action,
        before_json=before,
        after_json=model_to_audit_dict(request),
    )


async def _create_pending_request(
    session: AsyncSession,
    auth: AuthContext,
    submission: SubmissionPayload,
) -> ApprovalRequest:
    employee = await get_employee_service().get_employee(auth.user_id)
    request = ApprovalRequest(
        request_type=submission.request_type.value,
        requester_id=auth.user_id,
        requester_name=employee.name if employee is not None else None,
        requester_grade_id=employee.effective_grade if employee is not None else DEFAULT_ROLE_GRADES[auth.role],
        reason=submission.reason,
        status=RequestStatus.PENDING.value,
    )

    if isinstance(submission, LeaveSubmission):
        await _check_leave_overlap(session, auth.user_id, submission)
        request.from_date = submission.from_date
        request.to_date = submission.to_date
        request.leave_type = submission.leave_type.value
        request.leave_days = await _count_leave_days(session, submission)
    elif submission.request_type is RequestType.EXPENSE:
        request.amount = submission.amount
        request.category = submission.category
    else:
        request.discount_percentage = submission.discount_percentage

    if _requested_quantity(request) > await _remaining_for(session, request):
        raise InsufficientBalanceError

    session.add(request)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=request.id,
        action=AuditAction.SUBMIT,
        after_json=model_to_audit_dict(request),
    )
    return request


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def decide(session: AsyncSession, request: ApprovalRequest) -> Decision:
    """Evaluate a pending request against the active rules and apply the outcome.

    Runs inside the caller's transaction; the caller commits.
    """
    rules = await load_active_rules(session, RequestType(request.request_type))
    decision = evaluate(_evaluation_subject(request), rules)
    await _apply_decision(session, request, decision)
    logger.info(
        "Request %s (%s) decided %s by rule %s",
        request.id,
        request.request_type,
        decision.outcome.value,
        decision.matched_rule_id,
    )
    return decision


async def submit_request(
    session: AsyncSession,
    auth: AuthContext,
    request_type: RequestType,
    payload: Any,
) -> RequestResponse:
    """Submit a leave, expense or discount request and decide it.

    Flow:
    1. Normalize and validate the boundary payload
    2. Leave only: reject overlapping ranges, count days
    3. Check the requester's remaining quota
    4. Create the request (PENDING) and audit it
    5. Evaluate rules; auto-approve debits the ledger in the same transaction
    6. Commit
    """
    submission = parse_submission(request_type, payload)

    try:
        request = await _create_pending_request(session, auth, submission)
        await decide(session, request)
        await session.commit()
    except AppError:
        await session.rollback()
        raise

    await session.refresh(request)
    return _build_request_response(request)


async def approve_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: int,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Approve a pending request: debit the ledger and mark it approved."""
    request = await _get_request_or_404(session, request_id)
    _ensure_pending(request, "approved")
    await _ensure_can_decide(auth, request)

    before = model_to_audit_dict(request)
    try:
        await _claim_pending(session, request.id)
        await _debit_for(session, request)

        now = datetime.now(UTC)
        request.status = RequestStatus.APPROVED.value
        request.was_automatic = False
        request.status_reason = payload.comment if payload else None
        request.decided_by = auth.user_id
        request.decided_at = now
        request.updated_at = now
        session.add(request)
        await session.flush()

        await write_audit_log(
            session,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.REQUEST,
            entity_id=request.id,
            action=AuditAction.APPROVE,
            before_json=before,
            after_json=model_to_audit_dict(request),
        )
        await session.commit()
    except AppError:
        await session.rollback()
        raise

    await session.refresh(request)
    logger.info("Request %s approved by user %s", request.id, auth.user_id)
    return _build_request_response(request)


async def reject_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: int,
    payload: DecisionPayload | None = None,
) -> RequestResponse:
    """Reject a pending request. No ledger effect."""
    request = await _get_request_or_404(session, request_id)
    _ensure_pending(request, "rejected")
    await _ensure_can_decide(auth, request)

    before = model_to_audit_dict(request)
    try:
        await _claim_pending(session, request.id)

        now = datetime.now(UTC)
        request.status = RequestStatus.REJECTED.value
        request.was_automatic = False
        request.status_reason = payload.comment if payload else None
        request.decided_by = auth.user_id
        request.decided_at = now
        request.updated_at = now
        session.add(request)
        await session.flush()

        await write_audit_log(
            session,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.REQUEST,
            entity_id=request.id,
            action=AuditAction.REJECT,
            before_json=before,
            after_json=model_to_audit_dict(request),
        )
        await session.commit()
    except AppError:
        await session.rollback()
        raise

    await session.refresh(request)
    logger.info("Request %s rejected by user %s", request.id, auth.user_id)
    return _build_request_response(request)


async def cancel_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: int,
) -> RequestResponse:
    """Cancel a pending request. Only the requester may cancel."""
    request = await _get_request_or_404(session, request_id)
    _ensure_pending(request, "cancelled")
    if request.requester_id != auth.user_id:
        raise ForbiddenError("Only the requester can cancel this request")

    before = model_to_audit_dict(request)
    try:
        await _claim_pending(session, request.id)

        request.status = RequestStatus.CANCELLED.value
        request.updated_at = datetime.now(UTC)
        session.add(request)
        await session.flush()

        await write_audit_log(
            session,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.REQUEST,
            entity_id=request.id,
            action=AuditAction.CANCEL,
            before_json=before,
            after_json=model_to_audit_dict(request),
        )
        await session.commit()
    except AppError:
        await session.rollback()
        raise

    await session.refresh(request)
    return _build_request_response(request)


async def _ensure_can_decide(auth: AuthContext, request: ApprovalRequest) -> None:
    if not auth.can_approve:
        raise ForbiddenError("Manager or admin access required")
    required = request.required_approver_grade_id
    if required is not None and await caller_grade(auth) < required:
        raise ForbiddenError(f"Approver grade {required} or higher is required for this request")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_request(session: AsyncSession, auth: AuthContext, request_id: int) -> RequestResponse:
    """Get a single request. Employees only see their own."""
    request = await _get_request_or_404(session, request_id)
    if request.requester_id != auth.user_id and not auth.can_approve:
        raise ForbiddenError("Not authorized to view this request")
    return _build_request_response(request)


async def _list_requests(
    session: AsyncSession,
    base_filters: list[Any],
    offset: int,
    limit: int,
) -> RequestListResponse:
    count_result = await session.execute(select(func.count()).select_from(ApprovalRequest).where(*base_filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(ApprovalRequest)
        .where(*base_filters)
        .order_by(col(ApprovalRequest.created_at).desc(), col(ApprovalRequest.id).desc())
        .offset(offset)
        .limit(limit)
    )
    requests = list(result.scalars().all())

    return RequestListResponse(
        items=[_build_request_response(r) for r in requests],
        total=total,
    )


async def list_my_requests(
    session: AsyncSession,
    user_id: int,
    request_type: RequestType | None = None,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """The caller's own requests of every status, newest first."""
    base_filters: list[Any] = [col(ApprovalRequest.requester_id) == user_id]
    if request_type is not None:
        base_filters.append(col(ApprovalRequest.request_type) == request_type.value)
    return await _list_requests(session, base_filters, offset, limit)


async def list_pending_requests(
    session: AsyncSession,
    approver_grade: int | None = None,
    request_type: RequestType | None = None,
    offset: int = 0,
    limit: int = 50,
) -> RequestListResponse:
    """Pending requests the given approver grade may act on.

    A request with no required grade is visible to every approver.
    """
    base_filters: list[Any] = [col(ApprovalRequest.status) == RequestStatus.PENDING.value]
    if approver_grade is not None:
        base_filters.append(
            or_(
                col(ApprovalRequest.required_approver_grade_id).is_(None),
                col(ApprovalRequest.required_approver_grade_id) <= approver_grade,
            )
        )
    if request_type is not None:
        base_filters.append(col(ApprovalRequest.request_type) == request_type.value)
    return await _list_requests(session, base_filters, offset, limit)


# ---------------------------------------------------------------------------
# Auto-reject sweep
# ---------------------------------------------------------------------------


async def run_auto_reject(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    older_than: timedelta | None = None,
) -> AutoRejectRunResult:
    """Auto-reject stale pending requests that match an active auto_reject rule.

    Each request commits on its own; a failure is logged, counted and skipped.

    Args:
        session: Database session.
        now: Reference time (defaults to the current UTC time).
        older_than: Minimum request age (defaults to ``auto_reject_after_hours``).
    """
    if now is None:
        now = datetime.now(UTC)
    if older_than is None:
        older_than = timedelta(hours=get_settings().auto_reject_after_hours)

    result = AutoRejectRunResult(cutoff=now - older_than)

    stale_result = await session.execute(
        select(ApprovalRequest)
        .where(
            col(ApprovalRequest.status) == RequestStatus.PENDING.value,
            col(ApprovalRequest.created_at) < result.cutoff,
        )
        .order_by(col(ApprovalRequest.id))
    )
    # Plain values only: a per-request rollback expires ORM instances.
    candidates = [(r.id, _evaluation_subject(r)) for r in stale_result.scalars().all()]

    rules: dict[RequestType, list[RuleSnapshot]] = {}
    for request_type in {subject.request_type for _, subject in candidates}:
        rules[request_type] = await load_active_rules(session, request_type, action=RuleAction.AUTO_REJECT)

    for request_id, subject in candidates:
        result.processed += 1
        decision = evaluate(subject, rules[subject.request_type], actions=[RuleAction.AUTO_REJECT])
        if decision.outcome is not DecisionOutcome.AUTO_REJECT:
            result.skipped += 1
            continue

        try:
            request = await _get_request_or_404(session, request_id)
            before = model_to_audit_dict(request)
            await _claim_pending(session, request_id)
            _stamp_automatic(request, RequestStatus.AUTO_REJECTED, decision, datetime.now(UTC))
            session.add(request)
            await session.flush()
            await write_audit_log(
                session,
                actor_id=None,
                entity_type=AuditEntityType.REQUEST,
                entity_id=request_id,
                action=AuditAction.AUTO_REJECT,
                before_json=before,
                after_json=model_to_audit_dict(request),
            )
            await session.commit()
            result.rejected += 1
        except InvalidStateError:
            await session.rollback()
            result.skipped += 1
        except Exception:
            logger.exception("Error auto-rejecting request=%s", request_id)
            await session.rollback()
            result.errors += 1

    logger.info(
        "Auto-reject sweep (cutoff %s): processed=%d rejected=%d skipped=%d errors=%d",
        result.cutoff.isoformat(),
        result.processed,
        result.rejected,
        result.skipped,
        result.errors,
    )
    return result
