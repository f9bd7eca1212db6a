from __future__ import annotations

import enum


class RequestType(enum.StrEnum):
    """Kind of request handled by the approval engine."""

    LEAVE = "leave"
    EXPENSE = "expense"
    DISCOUNT = "discount"


class LeaveType(enum.StrEnum):
    """Leave categories, each with its own balance pool."""

    EARN = "EARN"
    SICK = "SICK"
    CASUAL = "CASUAL"
    PERSONAL = "PERSONAL"
    UNPAID = "UNPAID"


class RequestStatus(enum.StrEnum):
    """State machine for requests. Every status except PENDING is terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    AUTO_REJECTED = "auto_rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING

    @property
    def is_automatic(self) -> bool:
        return self in (RequestStatus.AUTO_APPROVED, RequestStatus.AUTO_REJECTED)


# Statuses that block an overlapping leave range.
ACTIVE_LEAVE_STATUSES = (
    RequestStatus.PENDING,
    RequestStatus.APPROVED,
    RequestStatus.AUTO_APPROVED,
)


class RuleAction(enum.StrEnum):
    """Action taken when a rule's condition matches."""

    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    ASSIGN_APPROVER = "assign_approver"


class DecisionOutcome(enum.StrEnum):
    """Result of evaluating a request against the rule set."""

    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    ROUTE_TO_HUMAN = "route_to_human"


class ResourceClass(enum.StrEnum):
    """Dimension a balance account tracks."""

    LEAVE_EARN = "LEAVE_EARN"
    LEAVE_SICK = "LEAVE_SICK"
    LEAVE_CASUAL = "LEAVE_CASUAL"
    LEAVE_PERSONAL = "LEAVE_PERSONAL"
    LEAVE_UNPAID = "LEAVE_UNPAID"
    EXPENSE = "EXPENSE"
    DISCOUNT = "DISCOUNT"

    @classmethod
    def for_leave(cls, leave_type: LeaveType | str) -> ResourceClass:
        return cls(f"LEAVE_{LeaveType(leave_type).value}")

    @classmethod
    def for_request_type(cls, request_type: RequestType | str) -> ResourceClass:
        """Pool for non-leave request types."""
        request_type = RequestType(request_type)
        if request_type is RequestType.EXPENSE:
            return cls.EXPENSE
        if request_type is RequestType.DISCOUNT:
            return cls.DISCOUNT
        msg = "Leave pools depend on the leave type; use ResourceClass.for_leave"
        raise ValueError(msg)

    @property
    def leave_type(self) -> LeaveType | None:
        if self.value.startswith("LEAVE_"):
            return LeaveType(self.value.removeprefix("LEAVE_"))
        return None


class LedgerEntryType(enum.StrEnum):
    """Type of ledger entry affecting a balance."""

    ALLOCATION = "ALLOCATION"
    USAGE = "USAGE"


class LedgerSourceType(enum.StrEnum):
    """Origin of a ledger entry."""

    REQUEST = "REQUEST"
    SYSTEM = "SYSTEM"


class UserRole(enum.StrEnum):
    """Caller role for access checks."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    REQUEST = "REQUEST"
    RULE = "RULE"
    HOLIDAY = "HOLIDAY"
    BALANCE = "BALANCE"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TOGGLE = "TOGGLE"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    AUTO_APPROVE = "AUTO_APPROVE"
    AUTO_REJECT = "AUTO_REJECT"
    CANCEL = "CANCEL"
