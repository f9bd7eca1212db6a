from __future__ import annotations

import datetime
from typing import Annotated, Any, ClassVar, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, model_validator
from pydantic import ValidationError as PydanticValidationError

from approvals.exceptions import ValidationError
from approvals.models.enums import LeaveType, RequestStatus, RequestType
from approvals.schemas.boundary import normalize_payload, sanitize_text


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


LeaveReason = Annotated[str, BeforeValidator(sanitize_text), StringConstraints(min_length=10, max_length=1000)]
ShortReason = Annotated[str, BeforeValidator(sanitize_text), StringConstraints(min_length=5, max_length=500)]
Category = Annotated[str, BeforeValidator(sanitize_text), StringConstraints(min_length=1, max_length=100)]
Comment = Annotated[str, BeforeValidator(sanitize_text), StringConstraints(max_length=1000)]

# ---------------------------------------------------------------------------
# Submission payloads
# ---------------------------------------------------------------------------


class _Submission(BaseModel):
    """Shared behaviour for the per-type submission payloads."""

    model_config = ConfigDict(extra="ignore")

    request_type: ClassVar[RequestType]

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        return normalize_payload(data, cls.model_fields)


class LeaveSubmission(_Submission):
    """Request body for a leave request."""

    request_type: ClassVar[RequestType] = RequestType.LEAVE

    from_date: datetime.date
    to_date: datetime.date
    leave_type: Annotated[LeaveType, BeforeValidator(_upper)]
    reason: LeaveReason

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.to_date < self.from_date:
            msg = "to_date must be on or after from_date"
            raise ValueError(msg)
        return self

    @property
    def inclusive_days(self) -> int:
        return (self.to_date - self.from_date).days + 1


class ExpenseSubmission(_Submission):
    """Request body for an expense request."""

    request_type: ClassVar[RequestType] = RequestType.EXPENSE

    amount: float = Field(gt=0)
    category: Category
    reason: ShortReason


class DiscountSubmission(_Submission):
    """Request body for a discount request."""

    request_type: ClassVar[RequestType] = RequestType.DISCOUNT

    discount_percentage: float = Field(ge=1, le=25)
    reason: ShortReason


SubmissionPayload = LeaveSubmission | ExpenseSubmission | DiscountSubmission

_SUBMISSION_MODELS: dict[RequestType, type[_Submission]] = {
    RequestType.LEAVE: LeaveSubmission,
    RequestType.EXPENSE: ExpenseSubmission,
    RequestType.DISCOUNT: DiscountSubmission,
}


def format_validation_errors(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into one human-readable message."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "payload"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_submission(request_type: RequestType | str, data: Any) -> SubmissionPayload:
    """Validate a raw submission for ``request_type``, raising the domain ValidationError."""
    try:
        model = _SUBMISSION_MODELS[RequestType(request_type)]
    except ValueError:
        raise ValidationError(f"Unknown request type: {request_type}") from None

    if isinstance(data, model):
        return data  # type: ignore[return-value]
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc)) from None


class DecisionPayload(BaseModel):
    """Request body for approve/reject actions."""

    comment: Comment | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        return normalize_payload(data, ("comment",))


def parse_decision(data: Any) -> DecisionPayload:
    """Validate an approve/reject body; an empty or missing body means no comment."""
    try:
        return DecisionPayload.model_validate(data or {})
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc)) from None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RequestResponse(BaseModel):
    """Response schema for a single request of any type."""

    id: int
    request_type: RequestType
    requester_id: int
    requester_name: str | None
    from_date: datetime.date | None = None
    to_date: datetime.date | None = None
    leave_type: LeaveType | None = None
    leave_days: float | None = None
    amount: float | None = None
    category: str | None = None
    discount_percentage: float | None = None
    reason: str
    status: RequestStatus
    status_reason: str | None
    was_automatic: bool
    matched_rule_id: int | None
    matched_rule_version: int | None
    required_approver_grade_id: int | None
    debited_resource_class: str | None
    decided_by: int | None
    decided_at: datetime.datetime | None
    created_at: datetime.datetime
    updated_at: datetime.datetime


class RequestListResponse(BaseModel):
    """Paginated list of requests."""

    items: list[RequestResponse]
    total: int


class AutoRejectRunResponse(BaseModel):
    """Response from the auto-reject sweep trigger."""

    cutoff: datetime.datetime
    processed: int
    rejected: int
    skipped: int
    errors: int
