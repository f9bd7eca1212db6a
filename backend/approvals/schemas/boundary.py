"""Inbound key normalization for the snake_case HTTP boundary.

Clients (and older backend revisions) spell the same field several ways. Every
payload schema funnels through :func:`normalize_payload`, which looks each
canonical field up across its aliases in priority order and keeps the first
non-empty value.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "from_date": ("from_date", "fromDate", "start_date", "startDate"),
    "to_date": ("to_date", "toDate", "end_date", "endDate"),
    "leave_type": ("leave_type", "leaveType"),
    "reason": ("reason", "description", "justification"),
    "comment": ("comment", "approval_comment", "status_reason", "statusReason", "note"),
    "discount_percentage": ("discount_percentage", "discountPercentage", "percentage"),
    "request_type": ("request_type", "requestType", "type"),
    "is_active": ("is_active", "isActive"),
    "grade_id": ("grade_id", "gradeId"),
    "approver_grade_id": ("approver_grade_id", "approverGradeId"),
    "condition": ("condition", "conditions"),
}

_TAG_RE = re.compile(r"<[^>]*>?")


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def extract_field(data: Mapping[str, Any], field: str) -> Any:
    """Return the first non-empty value for ``field`` across its aliases, or None."""
    for key in FIELD_ALIASES.get(field, (field,)):
        value = data.get(key)
        if not _is_empty(value):
            return value
    return None


def normalize_payload(data: Any, fields: Iterable[str]) -> Any:
    """Rewrite alias keys of a raw payload onto their canonical field names.

    Non-mapping input is returned untouched so pydantic reports the type error.
    """
    if not isinstance(data, Mapping):
        return data
    normalized = dict(data)
    for field in fields:
        value = extract_field(data, field)
        if value is not None:
            normalized[field] = value
    return normalized


def sanitize_text(value: Any) -> Any:
    """Strip HTML tags and surrounding whitespace from free text."""
    if not isinstance(value, str):
        return value
    return _TAG_RE.sub("", value.strip()).strip()
