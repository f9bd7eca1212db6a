from sqlmodel import SQLModel

from approvals.models.audit import AuditLog
from approvals.models.balance import BalanceAccount
from approvals.models.base import IntIDBase, TimestampMixin
from approvals.models.enums import (
    AuditAction,
    AuditEntityType,
    DecisionOutcome,
    LeaveType,
    LedgerEntryType,
    LedgerSourceType,
    RequestStatus,
    RequestType,
    ResourceClass,
    RuleAction,
    UserRole,
)
from approvals.models.holiday import Holiday
from approvals.models.ledger import LedgerEntry
from approvals.models.request import ApprovalRequest
from approvals.models.rule import ApprovalRule

__all__ = [
    "ApprovalRequest",
    "ApprovalRule",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "BalanceAccount",
    "DecisionOutcome",
    "Holiday",
    "IntIDBase",
    "LeaveType",
    "LedgerEntry",
    "LedgerEntryType",
    "LedgerSourceType",
    "RequestStatus",
    "RequestType",
    "ResourceClass",
    "RuleAction",
    "SQLModel",
    "TimestampMixin",
    "UserRole",
]
