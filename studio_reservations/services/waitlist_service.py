"""Per-class FIFO queue of members waiting for a seat.

Positions are dense (1..N) at every commit: removing an entry shifts the
ones behind it forward. Promotion walks the queue in order and books the
first members whose balance covers the class.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_aware, system_clock
from ..core.errors import ErrorCode, StudioError
from ..core.locks import class_locks
from ..db import models
from ..db.models.booking import BookingSource
from ..db.models.studio_class import ClassStatus
from ..db.session import atomic
from . import booking_service, class_registry
from .catalog import DatabaseCatalog, PricingCatalog
from .credit_ledger import LedgerError
from .notification_service import (
    Notification,
    NotificationDispatcher,
    NotificationEvent,
    dispatch,
)

logger = logging.getLogger(__name__)


class WaitlistError(StudioError):
    pass


@dataclass(slots=True)
class PromotionResult:
    promoted: list[models.Booking] = field(default_factory=list)
    skipped_member_ids: list[int] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


def find_entry(db: Session, class_id: int, member_id: int) -> models.WaitlistEntry | None:
    return db.execute(
        select(models.WaitlistEntry).where(
            models.WaitlistEntry.class_id == class_id,
            models.WaitlistEntry.member_id == member_id,
        )
    ).scalar_one_or_none()


def list_entries(db: Session, class_id: int) -> list[models.WaitlistEntry]:
    return list(
        db.execute(
            select(models.WaitlistEntry)
            .where(models.WaitlistEntry.class_id == class_id)
            .order_by(models.WaitlistEntry.position)
        )
        .scalars()
        .all()
    )


def position_of(db: Session, class_id: int, member_id: int) -> int | None:
    entry = find_entry(db, class_id, member_id)
    return entry.position if entry else None


def append_entry(
    db: Session, studio_class: models.StudioClass, member_id: int, *, now: datetime
) -> models.WaitlistEntry:
    last_position = db.scalar(
        select(func.max(models.WaitlistEntry.position)).where(
            models.WaitlistEntry.class_id == studio_class.id
        )
    )
    entry = models.WaitlistEntry(
        class_id=studio_class.id,
        member_id=member_id,
        position=(last_position or 0) + 1,
        notified=False,
        joined_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def _remove_entry(db: Session, entry: models.WaitlistEntry) -> None:
    class_id = entry.class_id
    position = entry.position
    db.delete(entry)
    db.flush()
    db.execute(
        update(models.WaitlistEntry)
        .where(models.WaitlistEntry.class_id == class_id)
        .where(models.WaitlistEntry.position > position)
        .values(position=models.WaitlistEntry.position - 1)
        .execution_options(synchronize_session="fetch")
    )


def clear(db: Session, class_id: int) -> list[int]:
    """Drop every entry for the class; returns the member ids in queue order."""
    entries = list_entries(db, class_id)
    for entry in entries:
        db.delete(entry)
    db.flush()
    return [entry.member_id for entry in entries]


def join(
    db: Session,
    class_id: int,
    member_id: int,
    *,
    clock: Clock | None = None,
) -> models.WaitlistEntry:
    now = (clock or system_clock).now()
    if db.get(models.Member, member_id) is None:
        raise WaitlistError(ErrorCode.not_found, "Member not found")
    with class_locks.hold(class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, class_id)
            if studio_class.status != ClassStatus.scheduled:
                raise WaitlistError(ErrorCode.class_not_available, "Class is not available")
            if ensure_aware(studio_class.starts_at) <= now:
                raise WaitlistError(ErrorCode.class_not_available, "Class has already started")
            if booking_service.find_confirmed_booking(db, class_id, member_id):
                raise WaitlistError(ErrorCode.duplicate_booking, "Already booked")
            if find_entry(db, class_id, member_id):
                raise WaitlistError(
                    ErrorCode.duplicate_waitlist_entry, "Already on the waitlist"
                )
            if class_registry.confirmed_seat_count(db, class_id) < studio_class.capacity:
                raise WaitlistError(
                    ErrorCode.class_not_available, "Class has free seats, book it instead"
                )
            entry = append_entry(db, studio_class, member_id, now=now)
    logger.info(
        "Joined waitlist",
        extra={"class_id": class_id, "member_id": member_id, "position": entry.position},
    )
    return entry


def leave(db: Session, class_id: int, member_id: int) -> None:
    with class_locks.hold(class_id):
        with atomic(db):
            class_registry.lock_class(db, class_id)
            entry = find_entry(db, class_id, member_id)
            if entry is None:
                raise WaitlistError(ErrorCode.not_found, "Not on the waitlist")
            _remove_entry(db, entry)
    logger.info("Left waitlist", extra={"class_id": class_id, "member_id": member_id})


def promote_waiting(
    db: Session,
    studio_class: models.StudioClass,
    *,
    now: datetime,
    catalog: PricingCatalog,
) -> PromotionResult:
    """Fill free seats from the head of the queue.

    Runs inside the caller's class lock and transaction. Members who cannot
    pay keep their place; they are told once that a spot opened up.
    """
    result = PromotionResult()
    if studio_class.status != ClassStatus.scheduled:
        return result
    if ensure_aware(studio_class.starts_at) <= now:
        return result
    free_seats = studio_class.capacity - class_registry.confirmed_seat_count(db, studio_class.id)
    if free_seats <= 0:
        return result
    for entry in list_entries(db, studio_class.id):
        if free_seats == 0:
            break
        member_id = entry.member_id
        try:
            booking = booking_service.confirm_seat(
                db,
                studio_class,
                member_id,
                now=now,
                source=BookingSource.waitlist,
                catalog=catalog,
            )
        except LedgerError as exc:
            if exc.code != ErrorCode.insufficient_credits:
                raise
            result.skipped_member_ids.append(member_id)
            if not entry.notified:
                entry.notified = True
                result.notifications.append(
                    Notification(
                        member_id=member_id,
                        event_type=NotificationEvent.waitlist_spot_opened,
                        payload={
                            "class_id": studio_class.id,
                            "class_name": studio_class.name,
                            "position": entry.position,
                            "promoted": False,
                        },
                    )
                )
            continue
        _remove_entry(db, entry)
        free_seats -= 1
        result.promoted.append(booking)
        result.notifications.append(
            Notification(
                member_id=member_id,
                event_type=NotificationEvent.waitlist_spot_opened,
                payload={
                    "class_id": studio_class.id,
                    "class_name": studio_class.name,
                    "booking_id": booking.id,
                    "credits_used": booking.credits_used,
                    "promoted": True,
                },
            )
        )
        logger.info(
            "Promoted from waitlist",
            extra={"class_id": studio_class.id, "member_id": member_id, "booking_id": booking.id},
        )
    db.flush()
    return result


def promote_next(
    db: Session,
    class_id: int,
    *,
    clock: Clock | None = None,
    catalog: PricingCatalog | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> PromotionResult:
    now = (clock or system_clock).now()
    catalog = catalog or DatabaseCatalog(db)
    with class_locks.hold(class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, class_id)
            result = promote_waiting(db, studio_class, now=now, catalog=catalog)
    dispatch(dispatcher, result.notifications)
    return result


__all__ = [
    "WaitlistError",
    "PromotionResult",
    "find_entry",
    "list_entries",
    "position_of",
    "append_entry",
    "clear",
    "join",
    "leave",
    "promote_waiting",
    "promote_next",
]
