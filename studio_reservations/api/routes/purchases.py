from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.clock import Clock
from ...core.errors import StudioError
from ...db.session import get_db
from ...db import models, schemas
from ...db.models.pending_purchase import PendingPurchaseStatus
from ...db.models.unresolved_payment import UnresolvedStatus
from ...services import purchase_service
from ...services.notification_service import NotificationDispatcher
from ...services.payments import BasePaymentGateway

router = APIRouter(tags=["purchases"])


def _record(record: purchase_service.PurchaseRecord) -> schemas.PurchaseRecord:
    return schemas.PurchaseRecord(
        payment_id=record.payment.id,
        grant_id=record.grant.id,
        member_id=record.grant.member_id,
        credits_total=record.grant.credits_total,
        expires_at=record.grant.expires_at,
    )


@router.get("/pending-purchases", response_model=list[schemas.PendingPurchase])
def list_pending_purchases(
    status_filter: PendingPurchaseStatus | None = PendingPurchaseStatus.pending,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    return purchase_service.list_pending_purchases(db, status_filter)


@router.post(
    "/pending-purchases",
    response_model=schemas.PendingPurchase,
    status_code=status.HTTP_201_CREATED,
)
def create_pending_purchase(
    payload: schemas.PendingPurchaseCreate,
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        return purchase_service.create_pending_purchase(
            db, member.id, payload.product_id, notes=payload.notes, clock=clock
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc


@router.post("/pending-purchases/{pending_id}/confirm", response_model=schemas.PurchaseRecord)
def confirm_pending_purchase(
    pending_id: int,
    payload: schemas.PendingPurchaseConfirm,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
    gateway: BasePaymentGateway = Depends(deps.get_payment_gateway),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        record = purchase_service.confirm_pending_purchase(
            db,
            pending_id,
            admin=admin.login,
            admin_id=admin.id,
            external_transaction_id=payload.external_transaction_id,
            gateway=gateway,
            clock=clock,
            dispatcher=dispatcher,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return _record(record)


@router.post("/pending-purchases/{pending_id}/cancel", response_model=schemas.PendingPurchase)
def cancel_pending_purchase(
    pending_id: int,
    payload: schemas.PendingPurchaseCancel,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        return purchase_service.cancel_pending_purchase(
            db,
            pending_id,
            admin=admin.login,
            admin_id=admin.id,
            reason=payload.reason,
            clock=clock,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc


@router.get("/unresolved-payments", response_model=list[schemas.UnresolvedPayment])
def list_unresolved_payments(
    status_filter: UnresolvedStatus | None = UnresolvedStatus.open,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
):
    return purchase_service.list_unresolved_payments(db, status_filter)


@router.post("/unresolved-payments/{unresolved_id}/resolve", response_model=schemas.PurchaseRecord)
def resolve_unresolved_payment(
    unresolved_id: int,
    payload: schemas.UnresolvedPaymentResolve,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        record = purchase_service.resolve_unresolved_payment(
            db,
            unresolved_id,
            member_id=payload.member_id,
            product_id=payload.product_id,
            admin=admin.login,
            admin_id=admin.id,
            clock=clock,
            dispatcher=dispatcher,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return _record(record)


@router.post("/unresolved-payments/{unresolved_id}/dismiss", response_model=schemas.UnresolvedPayment)
def dismiss_unresolved_payment(
    unresolved_id: int,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin", "manager")),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        return purchase_service.dismiss_unresolved_payment(
            db, unresolved_id, admin=admin.login, admin_id=admin.id, clock=clock
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
