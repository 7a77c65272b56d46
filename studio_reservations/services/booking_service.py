from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_aware, system_clock
from ..core.constants import CLASS_CANCELED_REASON, SYSTEM_ACTOR
from ..core.errors import ErrorCode, StudioError
from ..core.locks import class_locks
from ..db import models
from ..db.models.booking import BookingSource, BookingStatus, CancellationType
from ..db.models.studio_class import ClassStatus
from ..db.session import atomic, violated_constraint
from . import class_registry, credit_ledger, waitlist_service
from .cancellation_policy import CancellationDecision, classify_cancellation, get_cancellation_policy
from .catalog import DatabaseCatalog, PricingCatalog
from .notification_service import (
    Notification,
    NotificationDispatcher,
    NotificationEvent,
    dispatch,
)

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (BookingStatus.attended, BookingStatus.no_show)


class BookingError(StudioError):
    pass


@dataclass(slots=True)
class BookingOutcome:
    booking: models.Booking | None = None
    waitlist_entry: models.WaitlistEntry | None = None

    @property
    def waitlisted(self) -> bool:
        return self.waitlist_entry is not None


@dataclass(slots=True)
class CancellationOutcome:
    booking: models.Booking
    decision: CancellationDecision
    credits_refunded: int
    promoted: list[models.Booking] = field(default_factory=list)


@dataclass(slots=True)
class ClassCancellationOutcome:
    studio_class: models.StudioClass
    cancelled_bookings: list[models.Booking] = field(default_factory=list)
    removed_entries: int = 0
    credits_refunded: int = 0


def _ensure_bookable(studio_class: models.StudioClass, now: datetime) -> None:
    if studio_class.status != ClassStatus.scheduled:
        raise BookingError(ErrorCode.class_not_available, "Class is not available")
    if ensure_aware(studio_class.starts_at) <= now:
        raise BookingError(ErrorCode.class_not_available, "Class has already started")


def find_confirmed_booking(
    db: Session, class_id: int, member_id: int
) -> models.Booking | None:
    return db.execute(
        select(models.Booking).where(
            models.Booking.class_id == class_id,
            models.Booking.member_id == member_id,
            models.Booking.status == BookingStatus.confirmed,
        )
    ).scalar_one_or_none()


def _get_member(db: Session, member_id: int) -> models.Member:
    member = db.get(models.Member, member_id)
    if member is None:
        raise BookingError(ErrorCode.not_found, "Member not found")
    return member


def _lock_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.execute(
        select(models.Booking)
        .where(models.Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if booking is None:
        raise BookingError(ErrorCode.not_found, "Booking not found")
    return booking


def _booking_payload(booking: models.Booking, studio_class: models.StudioClass) -> dict:
    return {
        "booking_id": booking.id,
        "class_id": studio_class.id,
        "class_name": studio_class.name,
        "starts_at": ensure_aware(studio_class.starts_at).isoformat(),
        "credits_used": booking.credits_used,
    }


def confirm_seat(
    db: Session,
    studio_class: models.StudioClass,
    member_id: int,
    *,
    now: datetime,
    source: BookingSource,
    catalog: PricingCatalog,
) -> models.Booking:
    """Debit the class price and insert a confirmed booking.

    The caller holds the class lock and owns the transaction. The debit runs
    first so a short balance leaves nothing behind to roll back.
    """
    price = catalog.get_class_price(studio_class.id) or 0
    debit = credit_ledger.debit(db, member_id, price, now=now)
    booking = models.Booking(
        class_id=studio_class.id,
        member_id=member_id,
        status=BookingStatus.confirmed,
        source=source,
        credits_used=debit.credits,
        booked_at=now,
    )
    db.add(booking)
    db.flush()
    debit.attach_booking(booking.id)
    db.flush()
    return booking


def request_booking(
    db: Session,
    *,
    class_id: int,
    member_id: int,
    clock: Clock | None = None,
    catalog: PricingCatalog | None = None,
    dispatcher: NotificationDispatcher | None = None,
    source: BookingSource = BookingSource.member,
    allow_waitlist: bool = True,
) -> BookingOutcome:
    """Book a seat, or queue the member when the class is full.

    Raises:
        BookingError: ``CLASS_NOT_AVAILABLE``, ``DUPLICATE_BOOKING``,
            ``DUPLICATE_WAITLIST_ENTRY`` or ``CAPACITY_EXCEEDED`` (only when
            ``allow_waitlist`` is off).
        LedgerError: ``INSUFFICIENT_CREDITS`` when the member cannot pay.
    """
    now = (clock or system_clock).now()
    catalog = catalog or DatabaseCatalog(db)
    _get_member(db, member_id)
    notifications: list[Notification] = []
    with class_locks.hold(class_id):
        try:
            with atomic(db):
                studio_class = class_registry.lock_class(db, class_id)
                _ensure_bookable(studio_class, now)
                if find_confirmed_booking(db, class_id, member_id):
                    raise BookingError(ErrorCode.duplicate_booking, "Already booked")
                if waitlist_service.find_entry(db, class_id, member_id):
                    raise BookingError(
                        ErrorCode.duplicate_waitlist_entry, "Already on the waitlist"
                    )
                seats_taken = class_registry.confirmed_seat_count(db, class_id)
                if seats_taken >= studio_class.capacity:
                    if not allow_waitlist:
                        raise BookingError(ErrorCode.capacity_exceeded, "No free seats")
                    entry = waitlist_service.append_entry(db, studio_class, member_id, now=now)
                    outcome = BookingOutcome(waitlist_entry=entry)
                else:
                    booking = confirm_seat(
                        db, studio_class, member_id, now=now, source=source, catalog=catalog
                    )
                    outcome = BookingOutcome(booking=booking)
                    notifications.append(
                        Notification(
                            member_id=member_id,
                            event_type=NotificationEvent.booking_confirmed,
                            payload=_booking_payload(booking, studio_class),
                        )
                    )
        except IntegrityError as exc:
            constraint = violated_constraint(exc)
            if "uq_booking_confirmed_member_class" in constraint or "bookings." in constraint:
                raise BookingError(ErrorCode.duplicate_booking, "Already booked") from exc
            if "uq_waitlist_member_class" in constraint or "waitlist_entries." in constraint:
                raise BookingError(
                    ErrorCode.duplicate_waitlist_entry, "Already on the waitlist"
                ) from exc
            raise
    if outcome.waitlisted:
        logger.info(
            "Class full, member waitlisted",
            extra={"class_id": class_id, "member_id": member_id},
        )
    else:
        logger.info(
            "Booking confirmed",
            extra={"class_id": class_id, "member_id": member_id, "booking_id": outcome.booking.id},
        )
    dispatch(dispatcher, notifications)
    return outcome


def cancel_booking(
    db: Session,
    booking_id: int,
    *,
    actor: str,
    clock: Clock | None = None,
    catalog: PricingCatalog | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> CancellationOutcome:
    """Cancel a confirmed booking ahead of class start.

    On-time cancellations refund every credit the booking consumed; late ones
    forfeit them. Either way the freed seat goes to the waitlist.
    """
    now = (clock or system_clock).now()
    catalog = catalog or DatabaseCatalog(db)
    existing = db.get(models.Booking, booking_id)
    if existing is None:
        raise BookingError(ErrorCode.not_found, "Booking not found")
    class_id = existing.class_id
    notifications: list[Notification] = []
    with class_locks.hold(class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, class_id)
            booking = _lock_booking(db, booking_id)
            if booking.status != BookingStatus.confirmed:
                raise BookingError(
                    ErrorCode.invalid_state_transition,
                    f"Cannot cancel a booking in status {booking.status.value}",
                )
            policy = get_cancellation_policy(db)
            decision = classify_cancellation(
                studio_class.starts_at,
                now,
                policy.window_hours,
                late_cancel_penalty=policy.late_cancel_penalty,
            )
            refunded = 0
            if decision.refund:
                refunded = credit_ledger.refund_booking(db, booking, now=now)
                booking.status = BookingStatus.cancelled_on_time
            else:
                booking.status = BookingStatus.cancelled_late
            booking.cancellation_type = decision.classification
            booking.cancelled_at = now
            booking.cancelled_by = actor
            db.flush()
            notifications.append(
                Notification(
                    member_id=booking.member_id,
                    event_type=NotificationEvent.booking_cancelled,
                    payload={
                        **_booking_payload(booking, studio_class),
                        "classification": decision.classification.value,
                        "credits_refunded": refunded,
                    },
                )
            )
            promotion = waitlist_service.promote_waiting(
                db, studio_class, now=now, catalog=catalog
            )
            notifications.extend(promotion.notifications)
    logger.info(
        "Booking cancelled",
        extra={
            "booking_id": booking_id,
            "classification": decision.classification.value,
            "credits_refunded": refunded,
        },
    )
    dispatch(dispatcher, notifications)
    return CancellationOutcome(
        booking=booking,
        decision=decision,
        credits_refunded=refunded,
        promoted=promotion.promoted,
    )


def settle_booking(
    db: Session,
    booking_id: int,
    status: BookingStatus,
    *,
    actor: str,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> models.Booking:
    """Mark a confirmed booking as attended or no-show once the class has started."""
    if status not in SETTLED_STATUSES:
        raise BookingError(
            ErrorCode.invalid_state_transition, "Bookings settle as attended or no_show"
        )
    now = (clock or system_clock).now()
    existing = db.get(models.Booking, booking_id)
    if existing is None:
        raise BookingError(ErrorCode.not_found, "Booking not found")
    with class_locks.hold(existing.class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, existing.class_id)
            booking = _lock_booking(db, booking_id)
            _settle(db, booking, studio_class, status, now=now, actor=actor, actor_id=actor_id)
    return booking


def _settle(
    db: Session,
    booking: models.Booking,
    studio_class: models.StudioClass,
    status: BookingStatus,
    *,
    now: datetime,
    actor: str,
    actor_id: int | None,
) -> None:
    if booking.status != BookingStatus.confirmed:
        raise BookingError(
            ErrorCode.invalid_state_transition,
            f"Cannot settle a booking in status {booking.status.value}",
        )
    if ensure_aware(studio_class.starts_at) > now:
        raise BookingError(
            ErrorCode.invalid_state_transition,
            "Attendance can only be recorded once the class has started",
        )
    booking.status = status
    if status == BookingStatus.no_show:
        booking.cancellation_type = CancellationType.no_show
    db.add(
        models.AuditLog(
            actor_type=models.ActorType.admin if actor_id else models.ActorType.system,
            actor_id=actor_id,
            action=f"booking_{status.value}",
            payload={"booking_id": booking.id, "class_id": studio_class.id, "actor": actor},
        )
    )


def settle_class(
    db: Session,
    class_id: int,
    *,
    attended: list[int] | None = None,
    no_show: list[int] | None = None,
    actor: str,
    actor_id: int | None = None,
    clock: Clock | None = None,
) -> list[models.Booking]:
    """Record attendance for several bookings of one class in a single transaction."""
    now = (clock or system_clock).now()
    marks = [(booking_id, BookingStatus.attended) for booking_id in attended or []]
    marks += [(booking_id, BookingStatus.no_show) for booking_id in no_show or []]
    settled: list[models.Booking] = []
    with class_locks.hold(class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, class_id)
            for booking_id, status in marks:
                booking = _lock_booking(db, booking_id)
                if booking.class_id != class_id:
                    raise BookingError(
                        ErrorCode.not_found, f"Booking {booking_id} does not belong to this class"
                    )
                _settle(db, booking, studio_class, status, now=now, actor=actor, actor_id=actor_id)
                settled.append(booking)
    return settled


def cancel_class(
    db: Session,
    class_id: int,
    *,
    reason: str | None = None,
    actor: str,
    actor_id: int | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> ClassCancellationOutcome:
    """Cancel a scheduled class: refund every booking in full and drop the waitlist."""
    now = (clock or system_clock).now()
    notifications: list[Notification] = []
    with class_locks.hold(class_id):
        with atomic(db):
            studio_class = class_registry.lock_class(db, class_id)
            if studio_class.status != ClassStatus.scheduled:
                raise BookingError(
                    ErrorCode.invalid_state_transition,
                    f"Cannot cancel a class in status {studio_class.status.value}",
                )
            studio_class.status = ClassStatus.cancelled
            studio_class.cancellation_reason = reason
            outcome = ClassCancellationOutcome(studio_class=studio_class)
            bookings = (
                db.execute(
                    select(models.Booking)
                    .where(models.Booking.class_id == class_id)
                    .where(models.Booking.status == BookingStatus.confirmed)
                    .order_by(models.Booking.id)
                )
                .scalars()
                .all()
            )
            for booking in bookings:
                outcome.credits_refunded += credit_ledger.refund_booking(db, booking, now=now)
                booking.status = BookingStatus.cancelled_on_time
                booking.cancellation_type = CancellationType.on_time
                booking.cancelled_at = now
                booking.cancelled_by = actor
                booking.cancellation_reason = CLASS_CANCELED_REASON
                outcome.cancelled_bookings.append(booking)
            waiting = waitlist_service.clear(db, class_id)
            outcome.removed_entries = len(waiting)
            affected = [booking.member_id for booking in bookings]
            affected += [member_id for member_id in waiting if member_id not in affected]
            payload = {
                "class_id": studio_class.id,
                "class_name": studio_class.name,
                "starts_at": ensure_aware(studio_class.starts_at).isoformat(),
                "reason": reason,
            }
            for member_id in affected:
                notifications.append(
                    Notification(
                        member_id=member_id,
                        event_type=NotificationEvent.class_cancelled,
                        payload=dict(payload),
                    )
                )
            db.add(
                models.AuditLog(
                    actor_type=models.ActorType.admin if actor_id else models.ActorType.system,
                    actor_id=actor_id,
                    action="class_cancelled",
                    payload={
                        **payload,
                        "booking_ids": [booking.id for booking in bookings],
                        "waitlisted_member_ids": waiting,
                        "credits_refunded": outcome.credits_refunded,
                    },
                )
            )
    logger.info(
        "Class cancelled",
        extra={
            "class_id": class_id,
            "bookings": len(outcome.cancelled_bookings),
            "credits_refunded": outcome.credits_refunded,
        },
    )
    dispatch(dispatcher, notifications)
    return outcome


def complete_finished_classes(
    db: Session, *, clock: Clock | None = None
) -> list[models.StudioClass]:
    """Close scheduled classes whose end time has passed and drop their waitlists."""
    now = (clock or system_clock).now()
    candidates = (
        db.execute(
            select(models.StudioClass.id)
            .where(models.StudioClass.status == ClassStatus.scheduled)
            .where(models.StudioClass.ends_at <= now)
        )
        .scalars()
        .all()
    )
    completed: list[models.StudioClass] = []
    for class_id in candidates:
        with class_locks.hold(class_id):
            with atomic(db):
                studio_class = class_registry.lock_class(db, class_id)
                if studio_class.status != ClassStatus.scheduled:
                    continue
                studio_class.status = ClassStatus.completed
                dropped = waitlist_service.clear(db, class_id)
                db.add(
                    models.AuditLog(
                        actor_type=models.ActorType.system,
                        action="class_completed",
                        payload={
                            "class_id": class_id,
                            "waitlist_dropped": dropped,
                            "actor": SYSTEM_ACTOR,
                        },
                    )
                )
                completed.append(studio_class)
    if completed:
        logger.info(
            "Completed finished classes",
            extra={"class_ids": [studio_class.id for studio_class in completed]},
        )
    return completed


__all__ = [
    "BookingError",
    "BookingOutcome",
    "CancellationOutcome",
    "ClassCancellationOutcome",
    "find_confirmed_booking",
    "confirm_seat",
    "request_booking",
    "cancel_booking",
    "settle_booking",
    "settle_class",
    "cancel_class",
    "complete_finished_classes",
]
