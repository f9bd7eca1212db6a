from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from approvals.config import get_settings
from approvals.exceptions import InsufficientBalanceError, InvalidStateError
from approvals.models.balance import BalanceAccount
from approvals.models.enums import (
    AuditAction,
    AuditEntityType,
    LeaveType,
    LedgerEntryType,
    LedgerSourceType,
    ResourceClass,
)
from approvals.models.ledger import LedgerEntry
from approvals.schemas.balance import (
    LeaveBalance,
    LedgerEntryResponse,
    LedgerListResponse,
    QuotaBalance,
    UnifiedBalanceResponse,
)
from approvals.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

UNLIMITED = math.inf


# ---------------------------------------------------------------------------
# Pool configuration
# ---------------------------------------------------------------------------


def is_unlimited(resource_class: ResourceClass) -> bool:
    """Whether the pool skips balance checks and debits entirely."""
    leave_type = resource_class.leave_type
    return leave_type is not None and leave_type.value in get_settings().unlimited_leave_types


def default_total(resource_class: ResourceClass) -> float:
    """Quota allocated to an account the first time it is touched."""
    settings = get_settings()
    if resource_class is ResourceClass.EXPENSE:
        return float(settings.default_expense_quota)
    if resource_class is ResourceClass.DISCOUNT:
        return float(settings.default_discount_quota)
    leave_type = resource_class.leave_type
    return float(settings.default_leave_quota.get(leave_type.value, 0)) if leave_type else 0.0


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_ledger_entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        user_id=entry.user_id,
        resource_class=ResourceClass(entry.resource_class),
        entry_type=LedgerEntryType(entry.entry_type),
        amount=entry.amount,
        source_type=LedgerSourceType(entry.source_type),
        source_id=entry.source_id,
        metadata_json=entry.metadata_json,
        created_at=entry.created_at,
    )


async def _get_account(
    session: AsyncSession,
    user_id: int,
    resource_class: ResourceClass,
    *,
    for_update: bool = False,
) -> BalanceAccount | None:
    query = select(BalanceAccount).where(
        col(BalanceAccount.user_id) == user_id,
        col(BalanceAccount.resource_class) == resource_class.value,
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def _get_or_create_account(
    session: AsyncSession,
    user_id: int,
    resource_class: ResourceClass,
) -> BalanceAccount:
    """Get the account with a FOR UPDATE lock, allocating the default quota if absent."""
    account = await _get_account(session, user_id, resource_class, for_update=True)
    if account is not None:
        return account

    total = default_total(resource_class)
    account = BalanceAccount(
        user_id=user_id,
        resource_class=resource_class.value,
        total=total,
        used=0,
        remaining=total,
    )
    entry = LedgerEntry(
        user_id=user_id,
        resource_class=resource_class.value,
        entry_type=LedgerEntryType.ALLOCATION.value,
        amount=total,
        source_type=LedgerSourceType.SYSTEM.value,
        source_id=f"allocation:{user_id}:{resource_class.value}",
        metadata_json={"reason": "default quota"},
    )
    try:
        async with session.begin_nested():
            session.add(account)
            session.add(entry)
            await session.flush()
    except IntegrityError:
        # Allocated by a concurrent transaction since our read.
        existing = await _get_account(session, user_id, resource_class, for_update=True)
        if existing is None:
            raise
        return existing

    await write_audit_log(
        session,
        actor_id=None,
        entity_type=AuditEntityType.BALANCE,
        entity_id=entry.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(account),
    )
    logger.info("Allocated %s %s to user %s", total, resource_class.value, user_id)
    return account


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def get_remaining(
    session: AsyncSession,
    user_id: int,
    resource_class: ResourceClass,
    *,
    for_update: bool = False,
) -> float:
    """Remaining quota of one pool. Never writes; a missing account reads as the default."""
    if is_unlimited(resource_class):
        return UNLIMITED
    account = await _get_account(session, user_id, resource_class, for_update=for_update)
    if account is None:
        return default_total(resource_class)
    return account.remaining


async def get_effective_leave_remaining(
    session: AsyncSession,
    user_id: int,
    leave_type: LeaveType,
    *,
    for_update: bool = False,
) -> float:
    """Days available for ``leave_type``, counting the EARN pool when fallback is enabled."""
    resource_class = ResourceClass.for_leave(leave_type)
    remaining = await get_remaining(session, user_id, resource_class, for_update=for_update)
    if get_settings().leave_earn_fallback and leave_type is not LeaveType.EARN:
        earn = await get_remaining(session, user_id, ResourceClass.LEAVE_EARN, for_update=for_update)
        remaining = max(remaining, earn)
    return remaining


async def get_unified_balances(session: AsyncSession, user_id: int) -> UnifiedBalanceResponse:
    """All pools of one user; untouched pools report their default quota."""
    result = await session.execute(select(BalanceAccount).where(col(BalanceAccount.user_id) == user_id))
    accounts = {ResourceClass(a.resource_class): a for a in result.scalars().all()}

    def quota(resource_class: ResourceClass) -> tuple[float, float, float]:
        account = accounts.get(resource_class)
        if account is None:
            total = default_total(resource_class)
            return total, 0.0, total
        return account.total, account.used, account.remaining

    leaves: list[LeaveBalance] = []
    for leave_type in LeaveType:
        resource_class = ResourceClass.for_leave(leave_type)
        total, used, remaining = quota(resource_class)
        unlimited = is_unlimited(resource_class)
        leaves.append(
            LeaveBalance(
                leave_type=leave_type,
                total=None if unlimited else total,
                used=used,
                balance=None if unlimited else remaining,
                is_unlimited=unlimited,
            )
        )

    expense_total, expense_used, expense_remaining = quota(ResourceClass.EXPENSE)
    discount_total, discount_used, discount_remaining = quota(ResourceClass.DISCOUNT)
    return UnifiedBalanceResponse(
        user_id=user_id,
        leaves=leaves,
        expenses=QuotaBalance(total=expense_total, used=expense_used, remaining=expense_remaining),
        discounts=QuotaBalance(total=discount_total, used=discount_used, remaining=discount_remaining),
    )


async def list_ledger_entries(
    session: AsyncSession,
    user_id: int,
    resource_class: ResourceClass | None = None,
    offset: int = 0,
    limit: int = 50,
) -> LedgerListResponse:
    """Get paginated ledger entries for a user, newest first."""
    base_filter = [col(LedgerEntry.user_id) == user_id]
    if resource_class is not None:
        base_filter.append(col(LedgerEntry.resource_class) == resource_class.value)

    count_result = await session.execute(select(func.count()).select_from(LedgerEntry).where(*base_filter))
    total = count_result.scalar_one()

    entries_result = await session.execute(
        select(LedgerEntry)
        .where(*base_filter)
        .order_by(col(LedgerEntry.created_at).desc(), col(LedgerEntry.id).desc())
        .offset(offset)
        .limit(limit)
    )
    entries = list(entries_result.scalars().all())

    return LedgerListResponse(
        items=[_build_ledger_entry_response(e) for e in entries],
        total=total,
    )


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


async def debit(
    session: AsyncSession,
    user_id: int,
    resource_class: ResourceClass,
    amount: float,
    source_id: str,
    metadata: dict[str, Any] | None = None,
) -> BalanceAccount | None:
    """Debit ``amount`` from a pool inside the caller's transaction.

    The UPDATE only applies while ``remaining >= amount``, so a stale read can
    never overdraw the account. Returns None for unlimited pools.
    """
    if is_unlimited(resource_class):
        return None

    account = await _get_or_create_account(session, user_id, resource_class)

    result = await session.execute(
        update(BalanceAccount)
        .where(
            col(BalanceAccount.user_id) == user_id,
            col(BalanceAccount.resource_class) == resource_class.value,
            col(BalanceAccount.remaining) >= amount,
        )
        .values(
            used=col(BalanceAccount.used) + amount,
            remaining=col(BalanceAccount.remaining) - amount,
            version=col(BalanceAccount.version) + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientBalanceError

    session.add(
        LedgerEntry(
            user_id=user_id,
            resource_class=resource_class.value,
            entry_type=LedgerEntryType.USAGE.value,
            amount=-amount,
            source_type=LedgerSourceType.REQUEST.value,
            source_id=source_id,
            metadata_json=metadata,
        )
    )
    try:
        await session.flush()
    except IntegrityError:
        raise InvalidStateError(f"Balance already debited for source {source_id}") from None

    await session.refresh(account)
    return account


async def debit_leave(
    session: AsyncSession,
    user_id: int,
    leave_type: LeaveType,
    days: float,
    source_id: str,
) -> ResourceClass:
    """Debit leave days, falling back to the EARN pool when the named pool is short.

    Returns the pool that was actually debited.
    """
    resource_class = ResourceClass.for_leave(leave_type)
    metadata = {"leave_type": leave_type.value, "days": days}
    if is_unlimited(resource_class):
        return resource_class

    settings = get_settings()
    can_fall_back = settings.leave_earn_fallback and leave_type is not LeaveType.EARN
    if can_fall_back:
        remaining = await get_remaining(session, user_id, resource_class, for_update=True)
        if remaining < days:
            await debit(session, user_id, ResourceClass.LEAVE_EARN, days, source_id, metadata)
            logger.info("Debited %s EARN days in place of %s for user %s", days, leave_type.value, user_id)
            return ResourceClass.LEAVE_EARN

    await debit(session, user_id, resource_class, days, source_id, metadata)
    return resource_class
