from __future__ import annotations

import enum
import json
import re
from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Self, get_args

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from approvals.exceptions import ValidationError
from approvals.models.enums import LeaveType, RequestType, RuleAction
from approvals.schemas.boundary import normalize_payload
from approvals.schemas.request import format_validation_errors

# ---------------------------------------------------------------------------
# Condition language (tagged union)
# ---------------------------------------------------------------------------


class ComparisonOp(enum.StrEnum):
    """Comparison applied by a threshold condition."""

    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    EQ = "eq"
    NE = "ne"


NumericField = Literal["leave_days", "amount", "discount_percentage"]
EnumField = Literal["leave_type", "category"]

# Which request types carry each condition field.
FIELD_REQUEST_TYPES: dict[str, frozenset[RequestType]] = {
    "leave_days": frozenset({RequestType.LEAVE}),
    "leave_type": frozenset({RequestType.LEAVE}),
    "amount": frozenset({RequestType.EXPENSE}),
    "category": frozenset({RequestType.EXPENSE}),
    "discount_percentage": frozenset({RequestType.DISCOUNT}),
}


class ThresholdCondition(BaseModel):
    """Numeric comparison, e.g. ``amount < 1000``."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["threshold"] = "threshold"
    field: NumericField
    op: ComparisonOp
    value: float


class EqualsCondition(BaseModel):
    """Enum/text equality, e.g. ``leave_type == SICK``."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["equals"] = "equals"
    field: EnumField
    value: str = Field(min_length=1, max_length=100)


class AllCondition(BaseModel):
    """Conjunction of nested conditions. Empty means always true."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["all"] = "all"
    conditions: list[Condition] = []


Condition = Annotated[ThresholdCondition | EqualsCondition | AllCondition, Field(discriminator="kind")]

AllCondition.model_rebuild()

condition_adapter: TypeAdapter[Condition] = TypeAdapter(Condition)

# Legacy shorthand keys, e.g. {"max_amount": 5000} or {"max_days": 3, "leave_type": "SICK"}.
_SHORTHAND_THRESHOLDS: dict[str, tuple[str, ComparisonOp]] = {
    "max_days": ("leave_days", ComparisonOp.LTE),
    "min_days": ("leave_days", ComparisonOp.GTE),
    "max_amount": ("amount", ComparisonOp.LTE),
    "min_amount": ("amount", ComparisonOp.GTE),
    "max_percentage": ("discount_percentage", ComparisonOp.LTE),
    "max_discount": ("discount_percentage", ComparisonOp.LTE),
    "min_percentage": ("discount_percentage", ComparisonOp.GTE),
}
_SHORTHAND_EQUALS = frozenset({"leave_type", "category"})


def _expand_shorthand(raw: Mapping[str, Any]) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    for key, value in raw.items():
        if key in _SHORTHAND_THRESHOLDS:
            field, op = _SHORTHAND_THRESHOLDS[key]
            parts.append({"kind": "threshold", "field": field, "op": op.value, "value": value})
        elif key in _SHORTHAND_EQUALS:
            parts.append({"kind": "equals", "field": key, "value": value})
        else:
            raise ValidationError(f"Unrecognized condition key: {key}")
    if len(parts) == 1:
        return parts[0]
    return {"kind": "all", "conditions": parts}


# Conjunctive text form, e.g. 'leave_days <= 2 AND leave_type = "SICK"'.
_CLAUSE_SEPARATOR = re.compile(r"\s+AND\s+", re.IGNORECASE)
_CLAUSE = re.compile(
    r"""^(?P<field>[A-Za-z_]+)\s*(?P<op><=|>=|==|!=|<|>|=)\s*(?P<value>"[^"]*"|'[^']*'|[^\s"']+)$""",
)
_TEXT_OPS: dict[str, ComparisonOp] = {
    "<": ComparisonOp.LT,
    "<=": ComparisonOp.LTE,
    ">": ComparisonOp.GT,
    ">=": ComparisonOp.GTE,
    "=": ComparisonOp.EQ,
    "==": ComparisonOp.EQ,
    "!=": ComparisonOp.NE,
}


def _parse_expression(text: str) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    for clause in _CLAUSE_SEPARATOR.split(text.strip()):
        match = _CLAUSE.match(clause.strip())
        if match is None:
            raise ValidationError(f"Cannot parse condition clause: {clause.strip()!r}")

        field = match["field"].lower()
        op = _TEXT_OPS[match["op"]]
        value = match["value"]
        quoted = value[0] in "\"'"
        if quoted:
            value = value[1:-1]

        if field in get_args(NumericField):
            try:
                number = float(value)
            except ValueError:
                raise ValidationError(f"Condition field '{field}' needs a numeric value, got {value!r}") from None
            parts.append({"kind": "threshold", "field": field, "op": op.value, "value": number})
        elif field in get_args(EnumField):
            if op is not ComparisonOp.EQ:
                raise ValidationError(f"Condition field '{field}' only supports equality")
            parts.append({"kind": "equals", "field": field, "value": value})
        else:
            raise ValidationError(f"Unknown condition field: {field}")

    if len(parts) == 1:
        return parts[0]
    return {"kind": "all", "conditions": parts}


def iter_leaf_conditions(condition: Condition) -> Iterator[ThresholdCondition | EqualsCondition]:
    """Yield every non-conjunction node of a condition tree."""
    if isinstance(condition, AllCondition):
        for child in condition.conditions:
            yield from iter_leaf_conditions(child)
    else:
        yield condition


def parse_condition(raw: Any, request_type: RequestType | str) -> Condition:
    """Parse a rule condition into its canonical tagged form.

    Accepts the tagged form, the legacy shorthand object, either one as a
    JSON string, or a conjunctive text expression such as
    ``amount < 1000 AND category = "Travel"``. Shapes the evaluator cannot
    interpret are rejected here, so stored rules are always evaluable.
    """
    request_type = RequestType(request_type)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raw = {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raw = _parse_expression(raw)
    if not isinstance(raw, Mapping):
        raise ValidationError("Condition must be a JSON object")
    if "kind" not in raw:
        raw = _expand_shorthand(raw)

    try:
        condition = condition_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid condition: {format_validation_errors(exc)}") from None

    for leaf in iter_leaf_conditions(condition):
        if request_type not in FIELD_REQUEST_TYPES[leaf.field]:
            raise ValidationError(f"Condition field '{leaf.field}' does not apply to {request_type.value} requests")
        if leaf.field == "leave_type":
            try:
                leaf.value = LeaveType(leaf.value.upper()).value
            except ValueError:
                raise ValidationError(f"Unknown leave type in condition: {leaf.value}") from None
    return condition


# ---------------------------------------------------------------------------
# Rule payloads
# ---------------------------------------------------------------------------


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


_RULE_FIELDS = ("request_type", "condition", "is_active", "grade_id", "approver_grade_id")


class CreateRuleRequest(BaseModel):
    """Request body for creating an approval rule.

    ``condition`` stays raw here; the rule service parses it against
    ``request_type``.
    """

    request_type: Annotated[RequestType, BeforeValidator(_lower)]
    condition: dict[str, Any] | str | None = None
    action: Annotated[RuleAction, BeforeValidator(_lower)]
    priority: int = Field(default=1, ge=0)
    is_active: bool = True
    grade_id: int | None = Field(default=None, ge=1)
    approver_grade_id: int | None = Field(default=None, ge=1)
    description: str | None = Field(default=None, max_length=500)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        return normalize_payload(data, _RULE_FIELDS)

    @model_validator(mode="after")
    def _validate_approver(self) -> Self:
        if self.action == RuleAction.ASSIGN_APPROVER and self.approver_grade_id is None:
            msg = "approver_grade_id is required for assign_approver rules"
            raise ValueError(msg)
        return self


class UpdateRuleRequest(BaseModel):
    """Partial update of an approval rule. Omitted fields keep their value."""

    request_type: Annotated[RequestType | None, BeforeValidator(_lower)] = None
    condition: dict[str, Any] | str | None = None
    action: Annotated[RuleAction | None, BeforeValidator(_lower)] = None
    priority: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    grade_id: int | None = Field(default=None, ge=1)
    approver_grade_id: int | None = Field(default=None, ge=1)
    description: str | None = Field(default=None, max_length=500)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        return normalize_payload(data, _RULE_FIELDS)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RuleResponse(BaseModel):
    """Response schema for an approval rule."""

    id: int
    request_type: RequestType
    condition: dict[str, Any]
    action: RuleAction
    priority: int
    is_active: bool
    grade_id: int | None
    approver_grade_id: int | None
    description: str | None
    version: int
    created_at: datetime
    updated_at: datetime


class RuleListResponse(BaseModel):
    """List of approval rules."""

    items: list[RuleResponse]
    total: int
