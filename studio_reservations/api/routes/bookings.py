from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.clock import Clock
from ...core.errors import StudioError
from ...db.session import get_db
from ...db import models, schemas
from ...db.models.booking import BookingSource, BookingStatus
from ...services import booking_service
from ...services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _outcome(outcome: booking_service.BookingOutcome) -> schemas.BookingOutcome:
    if outcome.waitlisted:
        return schemas.BookingOutcome(status="waitlisted", waitlist_entry=outcome.waitlist_entry)
    return schemas.BookingOutcome(status="confirmed", booking=outcome.booking)


@router.get("", response_model=list[schemas.Booking])
def list_bookings(
    class_id: int | None = None,
    member_id: int | None = None,
    status_filter: BookingStatus | None = None,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    query = db.query(models.Booking)
    if class_id:
        query = query.filter(models.Booking.class_id == class_id)
    if member_id:
        query = query.filter(models.Booking.member_id == member_id)
    if status_filter:
        query = query.filter(models.Booking.status == status_filter)
    return query.order_by(models.Booking.booked_at.desc()).all()


@router.get("/me", response_model=list[schemas.Booking])
def my_bookings(
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
):
    return (
        db.query(models.Booking)
        .filter(models.Booking.member_id == member.id)
        .order_by(models.Booking.booked_at.desc())
        .all()
    )


@router.post("", response_model=schemas.BookingOutcome, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        outcome = booking_service.request_booking(
            db,
            class_id=payload.class_id,
            member_id=member.id,
            clock=clock,
            dispatcher=dispatcher,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return _outcome(outcome)


@router.post("/admin", response_model=schemas.BookingOutcome, status_code=status.HTTP_201_CREATED)
def create_booking_for_member(
    payload: schemas.AdminBookingCreate,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        outcome = booking_service.request_booking(
            db,
            class_id=payload.class_id,
            member_id=payload.member_id,
            clock=clock,
            dispatcher=dispatcher,
            source=BookingSource.admin,
            allow_waitlist=False,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return _outcome(outcome)


@router.post("/{booking_id}/cancel", response_model=schemas.BookingCancellation)
def cancel_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: deps.Actor = Depends(deps.get_current_actor),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    booking = db.get(models.Booking, booking_id)
    if not booking or (not actor.is_admin and booking.member_id != actor.id):
        raise HTTPException(status_code=404, detail="Booking not found")
    try:
        outcome = booking_service.cancel_booking(
            db, booking_id, actor=actor.label, clock=clock, dispatcher=dispatcher
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return schemas.BookingCancellation(
        booking=outcome.booking,
        classification=outcome.decision.classification.value,
        refund=outcome.decision.refund,
        credits_refunded=outcome.credits_refunded,
        hours_until_class=round(outcome.decision.hours_until_class, 2),
        promoted_booking_ids=[promoted.id for promoted in outcome.promoted],
    )


@router.put("/{booking_id}/attendance", response_model=schemas.Booking)
def record_attendance(
    booking_id: int,
    payload: schemas.BookingAttendance,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        outcome = BookingStatus(payload.status)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail="Unknown attendance status") from exc
    try:
        return booking_service.settle_booking(
            db, booking_id, outcome, actor=admin.login, actor_id=admin.id, clock=clock
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
