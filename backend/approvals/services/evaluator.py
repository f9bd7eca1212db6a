"""Rule evaluation: a pure function from (request facts, rule snapshot) to a decision.

Nothing here touches the database. The orchestrator builds the snapshot, calls
:func:`evaluate` and applies the result.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from approvals.models.enums import DecisionOutcome, RequestType, RuleAction
from approvals.schemas.rule import (
    AllCondition,
    ComparisonOp,
    Condition,
    EqualsCondition,
    ThresholdCondition,
)

_OPERATORS: dict[ComparisonOp, Callable[[float, float], bool]] = {
    ComparisonOp.LT: operator.lt,
    ComparisonOp.LTE: operator.le,
    ComparisonOp.GT: operator.gt,
    ComparisonOp.GTE: operator.ge,
    ComparisonOp.EQ: operator.eq,
    ComparisonOp.NE: operator.ne,
}

_ACTION_OUTCOMES = {
    RuleAction.AUTO_APPROVE: DecisionOutcome.AUTO_APPROVE,
    RuleAction.AUTO_REJECT: DecisionOutcome.AUTO_REJECT,
    RuleAction.ASSIGN_APPROVER: DecisionOutcome.ROUTE_TO_HUMAN,
}


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable copy of a rule as it was read for one evaluation."""

    id: int
    request_type: RequestType
    condition: Condition
    action: RuleAction
    priority: int
    is_active: bool = True
    grade_id: int | None = None
    approver_grade_id: int | None = None
    version: int = 1


@dataclass(frozen=True)
class EvaluationSubject:
    """The request facts a rule condition can look at."""

    request_type: RequestType
    grade_id: int | None
    facts: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Decision:
    outcome: DecisionOutcome
    matched_rule_id: int | None = None
    matched_rule_version: int | None = None
    approver_grade_id: int | None = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def condition_matches(condition: Condition, facts: Mapping[str, Any]) -> bool:
    """Whether ``facts`` satisfy ``condition``.

    A missing fact or one of the wrong type is a non-match, never an error.
    """
    if isinstance(condition, AllCondition):
        return all(condition_matches(child, facts) for child in condition.conditions)

    value = facts.get(condition.field)
    if isinstance(condition, ThresholdCondition):
        if not _is_number(value):
            return False
        return _OPERATORS[condition.op](value, condition.value)
    if isinstance(condition, EqualsCondition):
        if not isinstance(value, str):
            return False
        return value.strip().casefold() == condition.value.strip().casefold()
    return False


def applicable_rules(subject: EvaluationSubject, rules: Iterable[RuleSnapshot]) -> list[RuleSnapshot]:
    """Rules in scope for ``subject``, in evaluation order (priority, then id)."""
    in_scope = [
        rule
        for rule in rules
        if rule.request_type == subject.request_type
        and rule.is_active
        and (rule.grade_id is None or rule.grade_id == subject.grade_id)
    ]
    return sorted(in_scope, key=lambda rule: (rule.priority, rule.id))


def evaluate(
    subject: EvaluationSubject,
    rules: Iterable[RuleSnapshot],
    *,
    actions: Iterable[RuleAction] | None = None,
) -> Decision:
    """Return the decision of the first matching rule, or route to a human.

    ``actions`` restricts the candidate rules to the given actions; the
    auto-reject sweep uses it to look at auto_reject rules only.
    """
    allowed = frozenset(actions) if actions is not None else None
    for rule in applicable_rules(subject, rules):
        if allowed is not None and rule.action not in allowed:
            continue
        if not condition_matches(rule.condition, subject.facts):
            continue
        return Decision(
            outcome=_ACTION_OUTCOMES[rule.action],
            matched_rule_id=rule.id,
            matched_rule_version=rule.version,
            approver_grade_id=rule.approver_grade_id if rule.action is RuleAction.ASSIGN_APPROVER else None,
        )
    return Decision(outcome=DecisionOutcome.ROUTE_TO_HUMAN)
