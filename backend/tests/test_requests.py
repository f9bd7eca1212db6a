"""End-to-end tests for the request workflow: submission, rule decisions, manual
approve/reject/cancel, overlap detection, approver grades and audit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlmodel import col

from approvals.models.audit import AuditLog
from approvals.models.ledger import LedgerEntry

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

EMPLOYEE_ID = 1
MANAGER_ID = 2
ADMIN_ID = 3
OTHER_EMPLOYEE_ID = 4

EMPLOYEE_HEADERS = {"X-User-Id": str(EMPLOYEE_ID), "X-Role": "employee"}
OTHER_HEADERS = {"X-User-Id": str(OTHER_EMPLOYEE_ID), "X-Role": "employee"}
MANAGER_HEADERS = {"X-User-Id": str(MANAGER_ID), "X-Role": "manager"}
ADMIN_HEADERS = {"X-User-Id": str(ADMIN_ID), "X-Role": "admin"}

LEAVE_URL = "/leaves/request"
EXPENSE_URL = "/expenses/request"
DISCOUNT_URL = "/discounts/request"
REQUESTS_URL = "/requests"


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _create_rule(client: AsyncClient, request_type: str, condition: Any, action: str, **extra: Any) -> int:
    payload = {"request_type": request_type, "condition": condition, "action": action, **extra}
    resp = await client.post("/admin/rules", json=payload, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    rule_id: int = resp.json()["id"]
    return rule_id


def _leave_payload(
    from_date: str = "2026-02-02",
    to_date: str = "2026-02-02",
    leave_type: str = "SICK",
    reason: str = "Feeling unwell today",
) -> dict[str, Any]:
    return {"from_date": from_date, "to_date": to_date, "leave_type": leave_type, "reason": reason}


def _expense_payload(amount: float = 4000, category: str = "Travel", reason: str = "Client visit") -> dict[str, Any]:
    return {"amount": amount, "category": category, "reason": reason}


async def _submit(
    client: AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    resp = await client.post(url, json=payload, headers=headers or EMPLOYEE_HEADERS)
    assert resp.status_code == 201, resp.text
    data: dict[str, Any] = resp.json()
    return data


async def _ledger_for(session: AsyncSession, source_id: int) -> list[LedgerEntry]:
    result = await session.execute(select(LedgerEntry).where(col(LedgerEntry.source_id) == str(source_id)))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Submission and automatic decisions
# ---------------------------------------------------------------------------


async def test_sick_leave_auto_approved_and_debited(async_client: AsyncClient) -> None:
    rule_id = await _create_rule(async_client, "leave", {"max_days": 2, "leave_type": "SICK"}, "auto_approve")

    data = await _submit(async_client, LEAVE_URL, _leave_payload())
    assert data["status"] == "auto_approved"
    assert data["was_automatic"] is True
    assert data["leave_days"] == 1
    assert data["matched_rule_id"] == rule_id
    assert data["matched_rule_version"] == 1
    assert data["status_reason"] == f"Automatically approved by rule #{rule_id} (v1)"
    assert data["decided_by"] is None
    assert data["decided_at"] is not None
    assert data["debited_resource_class"] == "LEAVE_SICK"
    assert data["requester_name"] == "Ada Employee"

    balances = (await async_client.get("/balances", headers=EMPLOYEE_HEADERS)).json()
    sick = next(b for b in balances["leaves"] if b["leave_type"] == "SICK")
    assert sick["total"] == 10
    assert sick["used"] == 1
    assert sick["balance"] == 9


async def test_two_day_sick_leave_goes_to_human(async_client: AsyncClient) -> None:
    await _create_rule(async_client, "leave", {"max_days": 1, "leave_type": "SICK"}, "auto_approve")

    data = await _submit(async_client, LEAVE_URL, _leave_payload(to_date="2026-02-03"))
    assert data["status"] == "pending"
    assert data["leave_days"] == 2
    assert data["was_automatic"] is False


async def test_expense_between_thresholds_stays_pending(async_client: AsyncClient) -> None:
    below = {"kind": "threshold", "field": "amount", "op": "lt", "value": 1000}
    await _create_rule(async_client, "expense", below, "auto_approve")
    await _create_rule(async_client, "expense", {"min_amount": 5000}, "auto_reject", priority=2)

    data = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))
    assert data["status"] == "pending"
    assert data["matched_rule_id"] is None
    assert data["debited_resource_class"] is None


async def test_expense_auto_rejected_has_no_ledger_effect(async_client: AsyncClient, db_session: AsyncSession) -> None:
    reject_id = await _create_rule(async_client, "expense", {"min_amount": 5000}, "auto_reject")

    data = await _submit(async_client, EXPENSE_URL, _expense_payload(6000))
    assert data["status"] == "auto_rejected"
    assert data["status_reason"] == f"Automatically rejected by rule #{reject_id} (v1)"
    assert await _ledger_for(db_session, data["id"]) == []

    balances = (await async_client.get("/balances", headers=EMPLOYEE_HEADERS)).json()
    assert balances["expenses"]["used"] == 0
    assert balances["expenses"]["remaining"] == 50000


async def test_auto_decision_records_rule_version(async_client: AsyncClient) -> None:
    rule_id = await _create_rule(async_client, "discount", {"max_percentage": 10}, "auto_approve")
    resp = await async_client.put(f"/admin/rules/{rule_id}", json={"priority": 4}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200

    data = await _submit(async_client, DISCOUNT_URL, {"discount_percentage": 5, "reason": "Loyal customer"})
    assert data["status"] == "auto_approved"
    assert data["matched_rule_version"] == 2
    assert data["status_reason"].endswith("(v2)")


async def test_discount_over_limit_rejected_at_boundary(async_client: AsyncClient) -> None:
    resp = await async_client.post(
        DISCOUNT_URL, json={"discount_percentage": 30, "reason": "Big customer"}, headers=EMPLOYEE_HEADERS
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "ValidationError"


async def test_submission_accepts_alias_keys_and_sanitizes(async_client: AsyncClient) -> None:
    data = await _submit(
        async_client,
        LEAVE_URL,
        {
            "startDate": "2026-04-06",
            "endDate": "2026-04-08",
            "leaveType": "casual",
            "description": "<b>Family</b> wedding trip",
        },
    )
    assert data["from_date"] == "2026-04-06"
    assert data["to_date"] == "2026-04-08"
    assert data["leave_type"] == "CASUAL"
    assert data["leave_days"] == 3
    assert data["reason"] == "Family wedding trip"


async def test_submission_exceeding_quota_rejected(async_client: AsyncClient) -> None:
    resp = await async_client.post(EXPENSE_URL, json=_expense_payload(60000), headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "InsufficientBalanceError"

    mine = (await async_client.get(f"{REQUESTS_URL}/my", headers=EMPLOYEE_HEADERS)).json()
    assert mine["total"] == 0


async def test_unpaid_leave_is_never_short(async_client: AsyncClient) -> None:
    await _create_rule(async_client, "leave", {"leave_type": "UNPAID"}, "auto_approve")

    data = await _submit(
        async_client, LEAVE_URL, _leave_payload("2026-06-01", "2026-06-30", "UNPAID", "Extended travel abroad")
    )
    assert data["status"] == "auto_approved"
    assert data["debited_resource_class"] == "LEAVE_UNPAID"

    ledger = (await async_client.get("/balances/ledger", headers=EMPLOYEE_HEADERS)).json()
    assert ledger["total"] == 0


async def test_missing_auth_header_rejected(async_client: AsyncClient) -> None:
    resp = await async_client.post(EXPENSE_URL, json=_expense_payload())
    assert resp.status_code == 422


async def test_unknown_role_header_rejected(async_client: AsyncClient) -> None:
    resp = await async_client.post(
        EXPENSE_URL, json=_expense_payload(), headers={"X-User-Id": "1", "X-Role": "superuser"}
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Overlap
# ---------------------------------------------------------------------------


async def test_overlapping_leave_rejected(async_client: AsyncClient) -> None:
    await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"))

    resp = await async_client.post(
        LEAVE_URL,
        json=_leave_payload("2026-02-02", "2026-02-05", "CASUAL", "Another short break"),
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "OverlapError"
    assert "overlap" in resp.json()["detail"].lower()


async def test_touching_ranges_overlap_inclusively(async_client: AsyncClient) -> None:
    await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"))

    resp = await async_client.post(
        LEAVE_URL,
        json=_leave_payload("2026-02-03", "2026-02-04", "EARN", "Winter holiday two"),
        headers=EMPLOYEE_HEADERS,
    )
    assert resp.status_code == 409


async def test_overlap_is_per_requester(async_client: AsyncClient) -> None:
    await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"))
    data = await _submit(
        async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"), OTHER_HEADERS
    )
    assert data["status"] == "pending"


async def test_cancelled_leave_frees_the_range(async_client: AsyncClient) -> None:
    first = await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"))
    resp = await async_client.post(f"{REQUESTS_URL}/{first['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 200

    second = await _submit(
        async_client, LEAVE_URL, _leave_payload("2026-02-02", "2026-02-05", "EARN", "Rescheduled holiday")
    )
    assert second["status"] == "pending"


async def test_rejected_leave_frees_the_range(async_client: AsyncClient) -> None:
    first = await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday"))
    resp = await async_client.post(f"{REQUESTS_URL}/{first['id']}/reject", headers=MANAGER_HEADERS)
    assert resp.status_code == 200

    await _submit(async_client, LEAVE_URL, _leave_payload("2026-02-01", "2026-02-03", "EARN", "Winter holiday again"))


# ---------------------------------------------------------------------------
# Manual decisions
# ---------------------------------------------------------------------------


async def test_manager_approves_expense_and_debits(async_client: AsyncClient, db_session: AsyncSession) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))

    resp = await async_client.post(
        f"{REQUESTS_URL}/{submitted['id']}/approve", json={"comment": "Approved for Q1"}, headers=MANAGER_HEADERS
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "approved"
    assert data["was_automatic"] is False
    assert data["decided_by"] == MANAGER_ID
    assert data["status_reason"] == "Approved for Q1"
    assert data["debited_resource_class"] == "EXPENSE"

    entries = await _ledger_for(db_session, submitted["id"])
    assert len(entries) == 1
    assert entries[0].amount == -4000

    balances = (await async_client.get("/balances", headers=EMPLOYEE_HEADERS)).json()
    assert balances["expenses"] == {"total": 50000, "used": 4000, "remaining": 46000}


async def test_second_approve_is_a_state_conflict(async_client: AsyncClient, db_session: AsyncSession) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))
    first = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=MANAGER_HEADERS)
    assert first.status_code == 200

    second = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=ADMIN_HEADERS)
    assert second.status_code == 409
    assert second.json()["error"] == "InvalidStateError"
    assert len(await _ledger_for(db_session, submitted["id"])) == 1


async def test_reject_with_alternate_comment_key(async_client: AsyncClient, db_session: AsyncSession) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))

    resp = await async_client.post(
        f"{REQUESTS_URL}/{submitted['id']}/reject",
        json={"approval_comment": "Missing receipts"},
        headers=MANAGER_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "rejected"
    assert data["status_reason"] == "Missing receipts"
    assert await _ledger_for(db_session, submitted["id"]) == []

    approve = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=MANAGER_HEADERS)
    assert approve.status_code == 409


async def test_approve_without_body(async_client: AsyncClient) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status_reason"] is None


async def test_employee_cannot_approve(async_client: AsyncClient) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=OTHER_HEADERS)
    assert resp.status_code == 403

    resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/reject", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 403


async def test_approve_unknown_request(async_client: AsyncClient) -> None:
    resp = await async_client.post(f"{REQUESTS_URL}/9999/approve", headers=MANAGER_HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFoundError"


async def test_manual_approval_can_use_earn_fallback(async_client: AsyncClient) -> None:
    submitted = await _submit(
        async_client, LEAVE_URL, _leave_payload("2026-05-04", "2026-05-10", "PERSONAL", "Personal matters to settle")
    )
    assert submitted["leave_days"] == 7
    assert submitted["status"] == "pending"

    resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=MANAGER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["debited_resource_class"] == "LEAVE_EARN"

    balances = (await async_client.get("/balances", headers=EMPLOYEE_HEADERS)).json()
    by_type = {b["leave_type"]: b for b in balances["leaves"]}
    assert by_type["EARN"]["balance"] == 8
    assert by_type["PERSONAL"]["balance"] == 5


async def test_approval_fails_when_quota_spent_meanwhile(async_client: AsyncClient) -> None:
    first = await _submit(async_client, EXPENSE_URL, _expense_payload(30000))
    second = await _submit(async_client, EXPENSE_URL, _expense_payload(30000))

    approved = await async_client.post(f"{REQUESTS_URL}/{first['id']}/approve", headers=MANAGER_HEADERS)
    assert approved.status_code == 200
    resp = await async_client.post(f"{REQUESTS_URL}/{second['id']}/approve", headers=MANAGER_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "InsufficientBalanceError"

    still_pending = (await async_client.get(f"{REQUESTS_URL}/{second['id']}", headers=EMPLOYEE_HEADERS)).json()
    assert still_pending["status"] == "pending"


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


async def test_cancel_twice_is_a_state_conflict(async_client: AsyncClient) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    first = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"

    second = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert second.status_code == 409


async def test_only_requester_can_cancel(async_client: AsyncClient) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    for headers in (OTHER_HEADERS, MANAGER_HEADERS):
        resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/cancel", headers=headers)
        assert resp.status_code == 403


async def test_cannot_cancel_auto_approved(async_client: AsyncClient) -> None:
    await _create_rule(async_client, "expense", {}, "auto_approve")
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    assert submitted["status"] == "auto_approved"

    resp = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/cancel", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 409


# ---------------------------------------------------------------------------
# Approver grades
# ---------------------------------------------------------------------------


async def test_assign_approver_requires_grade(async_client: AsyncClient) -> None:
    rule_id = await _create_rule(async_client, "expense", {"min_amount": 1000}, "assign_approver", approver_grade_id=3)

    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))
    assert submitted["status"] == "pending"
    assert submitted["required_approver_grade_id"] == 3
    assert submitted["matched_rule_id"] == rule_id

    manager = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=MANAGER_HEADERS)
    assert manager.status_code == 403

    admin = await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/approve", headers=ADMIN_HEADERS)
    assert admin.status_code == 200
    assert admin.json()["decided_by"] == ADMIN_ID


async def test_pending_list_respects_approver_grade(async_client: AsyncClient) -> None:
    await _create_rule(async_client, "expense", {"min_amount": 1000}, "assign_approver", approver_grade_id=3)
    senior = await _submit(async_client, EXPENSE_URL, _expense_payload(4000))
    regular = await _submit(async_client, EXPENSE_URL, _expense_payload(200))

    manager_view = (await async_client.get(f"{REQUESTS_URL}/pending", headers=MANAGER_HEADERS)).json()
    assert {r["id"] for r in manager_view["items"]} == {regular["id"]}

    admin_view = (await async_client.get(f"{REQUESTS_URL}/pending", headers=ADMIN_HEADERS)).json()
    assert {r["id"] for r in admin_view["items"]} == {senior["id"], regular["id"]}


async def test_pending_list_filters_by_type(async_client: AsyncClient) -> None:
    await _submit(async_client, EXPENSE_URL, _expense_payload(200))
    discount = await _submit(async_client, DISCOUNT_URL, {"discount_percentage": 12, "reason": "Bulk purchase"})

    resp = await async_client.get(
        f"{REQUESTS_URL}/pending", params={"request_type": "discount"}, headers=MANAGER_HEADERS
    )
    assert [r["id"] for r in resp.json()["items"]] == [discount["id"]]


async def test_employee_cannot_list_pending(async_client: AsyncClient) -> None:
    resp = await async_client.get(f"{REQUESTS_URL}/pending", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def test_get_request_visibility(async_client: AsyncClient) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    url = f"{REQUESTS_URL}/{submitted['id']}"

    assert (await async_client.get(url, headers=EMPLOYEE_HEADERS)).status_code == 200
    assert (await async_client.get(url, headers=MANAGER_HEADERS)).status_code == 200
    assert (await async_client.get(url, headers=OTHER_HEADERS)).status_code == 403


async def test_get_unknown_request(async_client: AsyncClient) -> None:
    resp = await async_client.get(f"{REQUESTS_URL}/404", headers=EMPLOYEE_HEADERS)
    assert resp.status_code == 404


async def test_my_requests_only_lists_own(async_client: AsyncClient) -> None:
    mine = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    await _submit(async_client, EXPENSE_URL, _expense_payload(100), OTHER_HEADERS)
    leave = await _submit(async_client, LEAVE_URL, _leave_payload())

    resp = await async_client.get(f"{REQUESTS_URL}/my", headers=EMPLOYEE_HEADERS)
    data = resp.json()
    assert data["total"] == 2
    assert {r["id"] for r in data["items"]} == {mine["id"], leave["id"]}

    resp = await async_client.get(f"{REQUESTS_URL}/my", params={"request_type": "leave"}, headers=EMPLOYEE_HEADERS)
    assert [r["id"] for r in resp.json()["items"]] == [leave["id"]]


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


async def test_audit_trail_for_auto_approval(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _create_rule(async_client, "expense", {"max_amount": 500}, "auto_approve")
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))

    result = await db_session.execute(
        select(AuditLog)
        .where(col(AuditLog.entity_type) == "REQUEST", col(AuditLog.entity_id) == submitted["id"])
        .order_by(col(AuditLog.id))
    )
    entries = list(result.scalars().all())
    assert [e.action for e in entries] == ["SUBMIT", "AUTO_APPROVE"]
    assert entries[0].actor_id == EMPLOYEE_ID
    assert entries[1].actor_id is None
    assert entries[1].before_json is not None
    assert entries[1].before_json["status"] == "pending"
    assert entries[1].after_json is not None
    assert entries[1].after_json["status"] == "auto_approved"


async def test_audit_trail_for_manual_rejection(async_client: AsyncClient, db_session: AsyncSession) -> None:
    submitted = await _submit(async_client, EXPENSE_URL, _expense_payload(100))
    await async_client.post(f"{REQUESTS_URL}/{submitted['id']}/reject", headers=MANAGER_HEADERS)

    result = await db_session.execute(
        select(AuditLog).where(
            col(AuditLog.entity_type) == "REQUEST",
            col(AuditLog.entity_id) == submitted["id"],
            col(AuditLog.action) == "REJECT",
        )
    )
    entry = result.scalar_one()
    assert entry.actor_id == MANAGER_ID
