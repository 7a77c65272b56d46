from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.clock import Clock
from ...core.errors import StudioError
from ...db.session import get_db
from ...db import models, schemas
from ...services import booking_service, class_registry, waitlist_service
from ...services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/classes", tags=["classes"])


@router.get("", response_model=list[schemas.StudioClassAvailability])
def list_classes(
    from_dt: datetime | None = None,
    to_dt: datetime | None = None,
    include_cancelled: bool = False,
    db: Session = Depends(get_db),
):
    return [
        schemas.StudioClassAvailability(
            **schemas.StudioClass.model_validate(item.studio_class).model_dump(),
            booked_seats=item.booked_seats,
            available_seats=item.available_seats,
            waitlist_size=item.waitlist_size,
        )
        for item in class_registry.list_classes(
            db, from_dt=from_dt, to_dt=to_dt, include_cancelled=include_cancelled
        )
    ]


@router.post("", response_model=schemas.StudioClass, status_code=status.HTTP_201_CREATED)
def create_class(
    payload: schemas.StudioClassCreate,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
):
    try:
        return class_registry.create_class(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@router.get("/{class_id}/registrations", response_model=schemas.ClassRegistrations)
def class_registrations(
    class_id: int,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    try:
        class_registry.get_class(db, class_id)
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    bookings = (
        db.query(models.Booking)
        .filter(models.Booking.class_id == class_id)
        .order_by(models.Booking.booked_at, models.Booking.id)
        .all()
    )
    return schemas.ClassRegistrations(
        class_id=class_id,
        bookings=bookings,
        waitlist=waitlist_service.list_entries(db, class_id),
    )


@router.post("/{class_id}/cancel", response_model=schemas.ClassCancellationResult)
def cancel_class(
    class_id: int,
    payload: schemas.ClassCancel,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        outcome = booking_service.cancel_class(
            db,
            class_id,
            reason=payload.reason,
            actor=admin.login,
            actor_id=admin.id,
            clock=clock,
            dispatcher=dispatcher,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return schemas.ClassCancellationResult(
        class_id=class_id,
        cancelled_bookings=len(outcome.cancelled_bookings),
        removed_waitlist_entries=outcome.removed_entries,
        credits_refunded=outcome.credits_refunded,
    )


@router.post("/{class_id}/attendance", response_model=list[schemas.Booking])
def record_attendance(
    class_id: int,
    payload: schemas.AttendanceBulk,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        return booking_service.settle_class(
            db,
            class_id,
            attended=payload.attended,
            no_show=payload.no_show,
            actor=admin.login,
            actor_id=admin.id,
            clock=clock,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
