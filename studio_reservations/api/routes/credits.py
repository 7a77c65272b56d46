from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from ...api import deps
from ...core.clock import Clock
from ...core.errors import StudioError
from ...db.session import get_db
from ...db import models, schemas
from ...services import credit_ledger, purchase_service
from ...services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/me", response_model=schemas.CreditBalance)
def my_credits(
    db: Session = Depends(get_db),
    member: models.Member = Depends(deps.get_current_member),
    clock: Clock = Depends(deps.get_clock),
):
    current = credit_ledger.balance(db, member.id, now=clock.now())
    return schemas.CreditBalance(
        member_id=member.id,
        credits=current.credits,
        unlimited=current.unlimited,
        grants=current.grants,
    )


@router.get("/members/{member_id}", response_model=schemas.CreditBalance)
def member_credits(
    member_id: int,
    db: Session = Depends(get_db),
    _: models.AdminUser = Depends(deps.require_roles("admin", "manager", "viewer")),
    clock: Clock = Depends(deps.get_clock),
):
    current = credit_ledger.balance(db, member_id, now=clock.now())
    return schemas.CreditBalance(
        member_id=member_id,
        credits=current.credits,
        unlimited=current.unlimited,
        grants=current.grants,
    )


@router.post("/grants", response_model=list[schemas.PurchaseRecord], status_code=status.HTTP_201_CREATED)
def grant_credits(
    payload: schemas.ManualGrantCreate,
    db: Session = Depends(get_db),
    admin: models.AdminUser = Depends(deps.require_roles("admin")),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    try:
        records = purchase_service.grant_manual_credits(
            db,
            member_ids=payload.member_ids,
            credits=payload.credits,
            expiration_days=payload.expiration_days,
            product_id=payload.product_id,
            notes=payload.notes,
            admin=admin.login,
            admin_id=admin.id,
            clock=clock,
            dispatcher=dispatcher,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return [
        schemas.PurchaseRecord(
            payment_id=record.payment.id,
            grant_id=record.grant.id,
            member_id=record.grant.member_id,
            credits_total=record.grant.credits_total,
            expires_at=record.grant.expires_at,
        )
        for record in records
    ]


@router.post("/expire", response_model=schemas.ExpireSweepResult)
def expire_credits(
    db: Session = Depends(get_db),
    _: None = Depends(deps.require_cron_secret),
    clock: Clock = Depends(deps.get_clock),
):
    try:
        expired = credit_ledger.expire_sweep(db, now=clock.now())
    except StudioError as exc:
        raise deps.http_error(exc) from exc
    return schemas.ExpireSweepResult(
        expired=len(expired), grant_ids=[item.grant_id for item in expired]
    )


@router.post("/grants/{grant_id}/auto-renew", response_model=schemas.CreditGrant)
def update_auto_renew(
    grant_id: int,
    payload: schemas.AutoRenewUpdate,
    db: Session = Depends(get_db),
    actor: deps.Actor = Depends(deps.get_current_actor),
):
    try:
        return purchase_service.set_auto_renew(
            db,
            grant_id,
            payload.auto_renew,
            member_id=None if actor.is_admin else actor.id,
        )
    except StudioError as exc:
        raise deps.http_error(exc) from exc


@router.post("/renew", response_model=schemas.RenewalSweepResult)
def renew_memberships(
    db: Session = Depends(get_db),
    _: None = Depends(deps.require_cron_secret),
    clock: Clock = Depends(deps.get_clock),
    dispatcher: NotificationDispatcher = Depends(deps.get_notification_dispatcher),
):
    outcomes = purchase_service.renew_memberships(db, clock=clock, dispatcher=dispatcher)
    items = [
        schemas.RenewalItem(
            grant_id=outcome.grant_id,
            member_id=outcome.member_id,
            status=outcome.status.value,
            renewal_grant_id=outcome.record.grant.id if outcome.record else None,
            payment_id=outcome.record.payment.id if outcome.record else None,
            error=outcome.error,
        )
        for outcome in outcomes
    ]
    return schemas.RenewalSweepResult(
        total_processed=len(items),
        renewed=sum(item.status == "renewed" for item in items),
        failed=sum(item.status == "failed" for item in items),
        renewals=items,
    )
