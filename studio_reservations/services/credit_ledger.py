"""Credit grants, balances and the debit/refund movements between them.

Functions here never commit except :func:`expire_sweep`; callers wrap them in
:func:`~studio_reservations.db.session.atomic` together with the booking or
payment rows they belong to.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import get_settings
from ..core.clock import ensure_aware
from ..core.constants import SYSTEM_ACTOR
from ..core.errors import ErrorCode, StudioError
from ..db import models
from ..db.models.credit_entry import CreditEntryReason
from ..db.models.credit_grant import GrantKind

logger = logging.getLogger(__name__)


class LedgerError(StudioError):
    pass


@dataclass(slots=True)
class DebitAllocation:
    grant_id: int
    credits: int


@dataclass(slots=True)
class DebitResult:
    allocations: list[DebitAllocation] = field(default_factory=list)
    entries: list[models.CreditEntry] = field(default_factory=list)
    unlimited_grant_id: int | None = None

    @property
    def credits(self) -> int:
        return sum(allocation.credits for allocation in self.allocations)

    def attach_booking(self, booking_id: int) -> None:
        for entry in self.entries:
            entry.booking_id = booking_id


@dataclass(slots=True)
class CreditBalance:
    credits: int
    unlimited: bool
    grants: list[models.CreditGrant]


@dataclass(slots=True)
class ExpiredGrant:
    grant_id: int
    member_id: int
    credits_forfeited: int | None
    expires_at: datetime


def _is_expired(grant: models.CreditGrant, now: datetime) -> bool:
    return grant.expires_at is not None and ensure_aware(grant.expires_at) <= now


def _consumption_order(grant: models.CreditGrant) -> tuple:
    # Soonest expiry first, never-expiring grants last.
    if grant.expires_at is None:
        return (1, 0.0, grant.id)
    return (0, ensure_aware(grant.expires_at).timestamp(), grant.id)


def _eligible_grants(
    db: Session, member_id: int, now: datetime, *, lock: bool = False
) -> list[models.CreditGrant]:
    stmt = select(models.CreditGrant).where(
        models.CreditGrant.member_id == member_id,
        models.CreditGrant.is_active.is_(True),
        or_(models.CreditGrant.expires_at.is_(None), models.CreditGrant.expires_at > now),
        or_(
            models.CreditGrant.credits_remaining.is_(None),
            models.CreditGrant.credits_remaining > 0,
        ),
    )
    if lock:
        stmt = stmt.with_for_update()
    with _version_guard():
        rows = list(db.execute(stmt).scalars())
    grants = [grant for grant in rows if not _is_expired(grant, now)]
    return sorted(grants, key=_consumption_order)


@contextmanager
def _version_guard() -> Iterator[None]:
    try:
        yield
    except StaleDataError as exc:
        raise LedgerError(
            ErrorCode.concurrent_modification,
            "Credit balance changed concurrently, retry the request",
        ) from exc


def balance(db: Session, member_id: int, *, now: datetime) -> CreditBalance:
    now = ensure_aware(now)
    grants = _eligible_grants(db, member_id, now)
    return CreditBalance(
        credits=sum(grant.credits_remaining or 0 for grant in grants),
        unlimited=any(grant.is_unlimited for grant in grants),
        grants=grants,
    )


def debit(
    db: Session,
    member_id: int,
    amount: int,
    *,
    now: datetime,
    booking_id: int | None = None,
) -> DebitResult:
    """Consume ``amount`` credits, soonest-expiring grant first.

    Nothing is written when the balance is short. An active unlimited grant
    covers any amount without being decremented.
    """
    if amount < 0:
        raise ValueError("amount must not be negative")
    if amount == 0:
        return DebitResult()
    now = ensure_aware(now)
    grants = _eligible_grants(db, member_id, now, lock=True)
    unlimited = next((grant for grant in grants if grant.is_unlimited), None)
    if unlimited is not None:
        return DebitResult(unlimited_grant_id=unlimited.id)
    available = sum(grant.credits_remaining for grant in grants)
    if available < amount:
        raise LedgerError(
            ErrorCode.insufficient_credits,
            f"Not enough credits: {available} available, {amount} required",
        )
    result = DebitResult()
    outstanding = amount
    for grant in grants:
        if outstanding == 0:
            break
        take = min(grant.credits_remaining, outstanding)
        grant.credits_remaining -= take
        outstanding -= take
        entry = models.CreditEntry(
            grant_id=grant.id,
            member_id=member_id,
            booking_id=booking_id,
            delta=-take,
            reason=CreditEntryReason.debit,
            created_at=now,
        )
        db.add(entry)
        result.allocations.append(DebitAllocation(grant_id=grant.id, credits=take))
        result.entries.append(entry)
    with _version_guard():
        db.flush()
    logger.info(
        "Debited credits",
        extra={"member_id": member_id, "credits": amount, "booking_id": booking_id},
    )
    return result


def grant(
    db: Session,
    member_id: int,
    credits_total: int | None,
    expires_at: datetime | None,
    *,
    kind: GrantKind,
    now: datetime,
    product_id: int | None = None,
    payment_id: int | None = None,
    booking_id: int | None = None,
    reason: CreditEntryReason = CreditEntryReason.grant,
) -> models.CreditGrant:
    """Create a grant; ``credits_total=None`` means unlimited access."""
    if credits_total is not None and credits_total <= 0:
        raise ValueError("credits_total must be positive or None for unlimited")
    new_grant = models.CreditGrant(
        member_id=member_id,
        kind=kind,
        product_id=product_id,
        payment_id=payment_id,
        credits_total=credits_total,
        credits_remaining=credits_total,
        purchased_at=ensure_aware(now),
        expires_at=ensure_aware(expires_at) if expires_at else None,
        is_active=True,
    )
    db.add(new_grant)
    db.flush()
    db.add(
        models.CreditEntry(
            grant_id=new_grant.id,
            member_id=member_id,
            booking_id=booking_id,
            delta=credits_total or 0,
            reason=reason,
            created_at=ensure_aware(now),
        )
    )
    db.flush()
    return new_grant


def credit(
    db: Session,
    member_id: int,
    amount: int,
    originating_grant_id: int,
    *,
    now: datetime,
    booking_id: int | None = None,
) -> models.CreditGrant:
    """Return ``amount`` credits to the grant they were debited from.

    A lapsed originating grant cannot take credits back; the amount is
    re-issued as a compensation grant instead.
    """
    if amount <= 0:
        raise ValueError("amount must be positive")
    now = ensure_aware(now)
    with _version_guard():
        original = db.execute(
            select(models.CreditGrant)
            .where(models.CreditGrant.id == originating_grant_id)
            .with_for_update()
        ).scalar_one_or_none()
    if original is None or original.member_id != member_id:
        raise LedgerError(ErrorCode.not_found, "Credit grant not found")
    if original.is_unlimited:
        return original
    if not original.is_active or _is_expired(original, now):
        settings = get_settings()
        compensation = grant(
            db,
            member_id,
            amount,
            now + timedelta(days=settings.compensation_validity_days),
            kind=GrantKind.compensation,
            now=now,
            booking_id=booking_id,
            reason=CreditEntryReason.refund,
        )
        logger.info(
            "Issued compensation grant for lapsed credits",
            extra={"member_id": member_id, "grant_id": originating_grant_id},
        )
        return compensation
    restorable = original.credits_total - original.credits_remaining
    restored = min(amount, restorable)
    if restored < amount:
        logger.warning(
            "Refund capped at grant total",
            extra={"grant_id": original.id, "requested": amount, "restored": restored},
        )
    if restored == 0:
        return original
    original.credits_remaining += restored
    db.add(
        models.CreditEntry(
            grant_id=original.id,
            member_id=member_id,
            booking_id=booking_id,
            delta=restored,
            reason=CreditEntryReason.refund,
            created_at=now,
        )
    )
    with _version_guard():
        db.flush()
    return original


def refund_booking(db: Session, booking: models.Booking, *, now: datetime) -> int:
    """Credit back every debit recorded for ``booking``; returns the credits refunded."""
    entries = (
        db.execute(
            select(models.CreditEntry).where(models.CreditEntry.booking_id == booking.id)
        )
        .scalars()
        .all()
    )
    if any(entry.reason == CreditEntryReason.refund for entry in entries):
        return 0
    per_grant: dict[int, int] = {}
    for entry in entries:
        if entry.reason == CreditEntryReason.debit:
            per_grant[entry.grant_id] = per_grant.get(entry.grant_id, 0) - entry.delta
    refunded = 0
    for grant_id, credits in per_grant.items():
        credit(db, booking.member_id, credits, grant_id, now=now, booking_id=booking.id)
        refunded += credits
    return refunded


def expire_sweep(db: Session, *, now: datetime) -> list[ExpiredGrant]:
    """Deactivate every active grant past its expiry; balances are forfeited."""
    now = ensure_aware(now)
    stale = (
        db.execute(
            select(models.CreditGrant)
            .where(models.CreditGrant.is_active.is_(True))
            .where(models.CreditGrant.expires_at.is_not(None))
            .where(models.CreditGrant.expires_at < now)
            .with_for_update()
        )
        .scalars()
        .all()
    )
    expired: list[ExpiredGrant] = []
    for item in stale:
        item.is_active = False
        expired.append(
            ExpiredGrant(
                grant_id=item.id,
                member_id=item.member_id,
                credits_forfeited=item.credits_remaining,
                expires_at=ensure_aware(item.expires_at),
            )
        )
    if expired:
        db.add(
            models.AuditLog(
                actor_type=models.ActorType.system,
                action="credit_grants_expired",
                payload={
                    "grant_ids": [item.grant_id for item in expired],
                    "swept_at": now.isoformat(),
                    "actor": SYSTEM_ACTOR,
                },
            )
        )
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise LedgerError(
            ErrorCode.concurrent_modification,
            "Credit grants changed during the expiry sweep",
        ) from exc
    logger.info("Expired credit grants", extra={"count": len(expired)})
    return expired


__all__ = [
    "LedgerError",
    "DebitAllocation",
    "DebitResult",
    "CreditBalance",
    "ExpiredGrant",
    "balance",
    "debit",
    "grant",
    "credit",
    "refund_booking",
    "expire_sweep",
]
