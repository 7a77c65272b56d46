from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.clock import Clock
from ...core.errors import StudioError
from ...db.session import get_db
from ...db import models, schemas
from ...services import waitlist_service
from ...services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


@router.get("", response_model=list[schemas.WaitlistEntry])
def list_waitlist(
    class_id: int | None = None,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    if class_id:
        return waitlist_service.list_entries(db, class_id)
    return (
        db.query(models.WaitlistEntry)
        .order_by(models.WaitlistEntry.class_id, models.WaitlistEntry.position)
        .all()
    )


@router.post("", response_model=schemas.WaitlistEntry, status_code=status.HTTP_201_CREATED)
def join_waitlist(
    payload: schemas.WaitlistJoin,
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        return waitlist_service.join(db, payload.class_id, member.id, clock=clock)
    except StudioError as exc:
        raise deps.http_error(exc) from exc


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
def leave_waitlist(
    class_id: int,
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
):
    try:
        waitlist_service.leave(db, class_id, member.id)
    except StudioError as exc:
        raise deps.http_error(exc) from exc


@router.post("/{class_id}/promote", response_model=schemas.PromotionResult)
def promote_waitlist(
    class_id: int,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        result = waitlist_service.promote_next(db, class_id, clock=clock, dispatcher=dispatcher)
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return schemas.PromotionResult(
        promoted_booking_ids=[booking.id for booking in result.promoted],
        skipped_member_ids=result.skipped_member_ids,
    )
