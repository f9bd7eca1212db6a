"""Unit tests for payload normalization, submission validation and the condition language."""

from __future__ import annotations

from datetime import date

import pytest

from approvals.exceptions import ValidationError
from approvals.models.enums import LeaveType, RequestStatus, RequestType, RuleAction
from approvals.schemas.boundary import extract_field, normalize_payload, sanitize_text
from approvals.schemas.request import (
    DiscountSubmission,
    ExpenseSubmission,
    LeaveSubmission,
    parse_decision,
    parse_submission,
)
from approvals.schemas.rule import (
    AllCondition,
    ComparisonOp,
    CreateRuleRequest,
    EqualsCondition,
    ThresholdCondition,
    parse_condition,
)

# ---------------------------------------------------------------------------
# Boundary normalization
# ---------------------------------------------------------------------------


def test_extract_field_follows_alias_priority() -> None:
    data = {"startDate": "2026-01-02", "fromDate": "2026-01-01"}
    assert extract_field(data, "from_date") == "2026-01-01"


def test_extract_field_skips_blank_values() -> None:
    data = {"reason": "   ", "description": None, "justification": "Conference travel"}
    assert extract_field(data, "reason") == "Conference travel"


def test_extract_field_missing_returns_none() -> None:
    assert extract_field({}, "comment") is None


def test_normalize_payload_keeps_explicit_canonical_key() -> None:
    data = normalize_payload({"comment": "ok", "note": "ignored"}, ["comment"])
    assert data["comment"] == "ok"


def test_normalize_payload_passes_non_mappings_through() -> None:
    assert normalize_payload(["not", "a", "dict"], ["comment"]) == ["not", "a", "dict"]


def test_sanitize_text_strips_tags_and_whitespace() -> None:
    assert sanitize_text("  <b>Family</b> event <script>x</script> ") == "Family event x"
    assert sanitize_text(None) is None


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def test_leave_submission_accepts_camel_case_aliases() -> None:
    submission = parse_submission(
        RequestType.LEAVE,
        {"fromDate": "2026-02-01", "endDate": "2026-02-03", "leaveType": "casual", "description": "Moving house"},
    )
    assert isinstance(submission, LeaveSubmission)
    assert submission.from_date == date(2026, 2, 1)
    assert submission.to_date == date(2026, 2, 3)
    assert submission.leave_type is LeaveType.CASUAL
    assert submission.reason == "Moving house"
    assert submission.inclusive_days == 3


def test_leave_submission_single_day_counts_one() -> None:
    submission = parse_submission(
        "leave", {"from_date": "2026-03-02", "to_date": "2026-03-02", "leave_type": "SICK", "reason": "Feeling unwell"}
    )
    assert isinstance(submission, LeaveSubmission)
    assert submission.inclusive_days == 1


def test_leave_submission_rejects_reversed_dates() -> None:
    with pytest.raises(ValidationError, match="to_date"):
        parse_submission(
            RequestType.LEAVE,
            {"from_date": "2026-02-05", "to_date": "2026-02-01", "leave_type": "EARN", "reason": "Holiday trip"},
        )


def test_leave_submission_rejects_short_reason() -> None:
    with pytest.raises(ValidationError):
        parse_submission(
            RequestType.LEAVE,
            {"from_date": "2026-02-01", "to_date": "2026-02-01", "leave_type": "EARN", "reason": "short"},
        )


def test_leave_submission_rejects_unknown_leave_type() -> None:
    with pytest.raises(ValidationError):
        parse_submission(
            RequestType.LEAVE,
            {"from_date": "2026-02-01", "to_date": "2026-02-01", "leave_type": "SABBATICAL", "reason": "Long break"},
        )


def test_reason_is_sanitized_before_length_check() -> None:
    with pytest.raises(ValidationError):
        parse_submission(RequestType.EXPENSE, {"amount": 10, "category": "Meals", "reason": "<p>ab</p>"})


def test_expense_submission_valid() -> None:
    submission = parse_submission(RequestType.EXPENSE, {"amount": "120.5", "category": "Meals", "reason": "Team lunch"})
    assert isinstance(submission, ExpenseSubmission)
    assert submission.amount == 120.5


def test_expense_submission_rejects_non_positive_amount() -> None:
    with pytest.raises(ValidationError):
        parse_submission(RequestType.EXPENSE, {"amount": 0, "category": "Meals", "reason": "Team lunch"})


@pytest.mark.parametrize("percentage", [0.5, 25.5, 30])
def test_discount_submission_out_of_range(percentage: float) -> None:
    with pytest.raises(ValidationError):
        parse_submission(RequestType.DISCOUNT, {"discount_percentage": percentage, "reason": "Loyal customer"})


def test_discount_submission_accepts_percentage_alias() -> None:
    submission = parse_submission(RequestType.DISCOUNT, {"percentage": 25, "justification": "Bulk order"})
    assert isinstance(submission, DiscountSubmission)
    assert submission.discount_percentage == 25


def test_parse_submission_unknown_type() -> None:
    with pytest.raises(ValidationError, match="Unknown request type"):
        parse_submission("overtime", {})


def test_parse_decision_alternate_keys() -> None:
    assert parse_decision({"approval_comment": "Looks good"}).comment == "Looks good"
    assert parse_decision({"statusReason": "Over budget"}).comment == "Over budget"
    assert parse_decision(None).comment is None


# ---------------------------------------------------------------------------
# Condition language
# ---------------------------------------------------------------------------


def test_shorthand_single_key_becomes_threshold() -> None:
    condition = parse_condition({"max_amount": 5000}, RequestType.EXPENSE)
    assert isinstance(condition, ThresholdCondition)
    assert condition.field == "amount"
    assert condition.op == ComparisonOp.LTE
    assert condition.value == 5000


def test_shorthand_min_key_uses_gte() -> None:
    condition = parse_condition({"min_days": 3}, RequestType.LEAVE)
    assert isinstance(condition, ThresholdCondition)
    assert condition.op == ComparisonOp.GTE


def test_shorthand_max_discount_alias() -> None:
    condition = parse_condition({"max_discount": 10}, RequestType.DISCOUNT)
    assert isinstance(condition, ThresholdCondition)
    assert condition.field == "discount_percentage"


def test_shorthand_multiple_keys_become_conjunction() -> None:
    condition = parse_condition({"max_days": 1, "leave_type": "sick"}, RequestType.LEAVE)
    assert isinstance(condition, AllCondition)
    assert len(condition.conditions) == 2
    equals = condition.conditions[1]
    assert isinstance(equals, EqualsCondition)
    assert equals.value == "SICK"


def test_empty_condition_is_empty_conjunction() -> None:
    for raw in ({}, None, ""):
        condition = parse_condition(raw, RequestType.EXPENSE)
        assert isinstance(condition, AllCondition)
        assert condition.conditions == []


def test_condition_json_string_is_parsed() -> None:
    condition = parse_condition('{"max_amount": 1000}', RequestType.EXPENSE)
    assert isinstance(condition, ThresholdCondition)


def test_condition_unparseable_string_rejected() -> None:
    with pytest.raises(ValidationError, match="Cannot parse"):
        parse_condition("{max_amount: 1000", RequestType.EXPENSE)


def test_text_condition_single_comparison() -> None:
    condition = parse_condition("amount < 1000", RequestType.EXPENSE)
    assert isinstance(condition, ThresholdCondition)
    assert condition.field == "amount"
    assert condition.op == ComparisonOp.LT
    assert condition.value == 1000


def test_text_condition_conjunction_with_quoted_enum() -> None:
    condition = parse_condition('leave_days <= 2 AND leave_type = "sick"', RequestType.LEAVE)
    assert condition.model_dump(mode="json") == {
        "kind": "all",
        "conditions": [
            {"kind": "threshold", "field": "leave_days", "op": "lte", "value": 2.0},
            {"kind": "equals", "field": "leave_type", "value": "SICK"},
        ],
    }


@pytest.mark.parametrize(
    ("text", "op"),
    [
        ("discount_percentage <= 10", ComparisonOp.LTE),
        ("discount_percentage>=5", ComparisonOp.GTE),
        ("discount_percentage > 5", ComparisonOp.GT),
        ("discount_percentage == 5", ComparisonOp.EQ),
        ("discount_percentage = 5", ComparisonOp.EQ),
        ("discount_percentage != 5", ComparisonOp.NE),
    ],
)
def test_text_condition_operators(text: str, op: ComparisonOp) -> None:
    condition = parse_condition(text, RequestType.DISCOUNT)
    assert isinstance(condition, ThresholdCondition)
    assert condition.op == op


def test_text_condition_keyword_is_case_insensitive() -> None:
    condition = parse_condition("amount >= 5000 and category = 'Office Supplies'", RequestType.EXPENSE)
    assert isinstance(condition, AllCondition)
    equals = condition.conditions[1]
    assert isinstance(equals, EqualsCondition)
    assert equals.value == "Office Supplies"


def test_text_condition_unknown_field_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown condition field"):
        parse_condition("hours < 4", RequestType.LEAVE)


def test_text_condition_unknown_operator_rejected() -> None:
    with pytest.raises(ValidationError, match="Cannot parse"):
        parse_condition("amount <> 1000", RequestType.EXPENSE)


def test_text_condition_non_numeric_threshold_rejected() -> None:
    with pytest.raises(ValidationError, match="numeric"):
        parse_condition("amount < lots", RequestType.EXPENSE)


def test_text_condition_enum_ordering_rejected() -> None:
    with pytest.raises(ValidationError, match="equality"):
        parse_condition('leave_type < "SICK"', RequestType.LEAVE)


def test_text_condition_field_from_other_request_type_rejected() -> None:
    with pytest.raises(ValidationError, match="does not apply"):
        parse_condition("amount < 1000", RequestType.DISCOUNT)


def test_condition_non_object_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_condition([1, 2], RequestType.EXPENSE)


def test_unknown_shorthand_key_rejected() -> None:
    with pytest.raises(ValidationError, match="max_hours"):
        parse_condition({"max_hours": 4}, RequestType.LEAVE)


def test_field_from_other_request_type_rejected() -> None:
    with pytest.raises(ValidationError, match="does not apply"):
        parse_condition({"max_amount": 1000}, RequestType.LEAVE)


def test_nested_field_from_other_request_type_rejected() -> None:
    raw = {
        "kind": "all",
        "conditions": [
            {"kind": "threshold", "field": "amount", "op": "lt", "value": 10},
            {"kind": "equals", "field": "leave_type", "value": "SICK"},
        ],
    }
    with pytest.raises(ValidationError):
        parse_condition(raw, RequestType.EXPENSE)


def test_unknown_operator_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_condition({"kind": "threshold", "field": "amount", "op": "between", "value": 1}, RequestType.EXPENSE)


def test_unknown_leave_type_in_condition_rejected() -> None:
    with pytest.raises(ValidationError, match="leave type"):
        parse_condition({"leave_type": "SABBATICAL"}, RequestType.LEAVE)


def test_tagged_condition_round_trips_to_same_canonical_form() -> None:
    canonical = parse_condition({"max_days": 2, "leave_type": "EARN"}, RequestType.LEAVE).model_dump(mode="json")
    assert parse_condition(canonical, RequestType.LEAVE).model_dump(mode="json") == canonical


# ---------------------------------------------------------------------------
# Rule payloads
# ---------------------------------------------------------------------------


def test_create_rule_accepts_uppercase_action_and_aliases() -> None:
    payload = CreateRuleRequest.model_validate(
        {"requestType": "EXPENSE", "action": "AUTO_APPROVE", "conditions": {"max_amount": 100}, "isActive": False}
    )
    assert payload.request_type is RequestType.EXPENSE
    assert payload.action is RuleAction.AUTO_APPROVE
    assert payload.condition == {"max_amount": 100}
    assert payload.is_active is False


def test_create_rule_assign_approver_requires_grade() -> None:
    from pydantic import ValidationError as PydanticValidationError

    with pytest.raises(PydanticValidationError):
        CreateRuleRequest.model_validate({"request_type": "expense", "action": "assign_approver"})


# ---------------------------------------------------------------------------
# Request status taxonomy
# ---------------------------------------------------------------------------


def test_only_pending_is_open() -> None:
    assert not RequestStatus.PENDING.is_terminal
    assert all(s.is_terminal for s in RequestStatus if s is not RequestStatus.PENDING)


def test_automatic_statuses() -> None:
    assert {s for s in RequestStatus if s.is_automatic} == {RequestStatus.AUTO_APPROVED, RequestStatus.AUTO_REJECTED}
