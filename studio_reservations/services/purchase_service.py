"""Turning money into credits.

Admin confirmation of a pending purchase, gateway webhooks and manual
adjustments all end in :func:`_record_purchase`, which writes the Payment and
its CreditGrant together. The unique external transaction id on ``payments``
makes a second delivery of the same charge a no-op.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import get_settings
from ..core.clock import Clock, ensure_aware, system_clock
from ..core.constants import (
    ADMIN_TRANSACTION_PREFIX,
    MANUAL_TRANSACTION_PREFIX,
    RENEWAL_TRANSACTION_PREFIX,
    SYSTEM_ACTOR,
)
from ..core.errors import ErrorCode, StudioError
from ..core.locks import purchase_locks
from ..db import models
from ..db.models.credit_grant import GrantKind
from ..db.models.payment import PaymentMethod
from ..db.models.pending_purchase import PendingPurchaseStatus
from ..db.models.product import ProductKind
from ..db.models.unresolved_payment import UnresolvedReason, UnresolvedStatus
from ..db.session import atomic, violated_constraint
from . import credit_ledger
from .catalog import (
    CreditTerms,
    DatabaseCatalog,
    PricingCatalog,
    find_product_by_link,
    find_product_by_price,
    terms_for_product,
)
from .notification_service import (
    Notification,
    NotificationDispatcher,
    NotificationEvent,
    dispatch,
)
from .payments import BasePaymentGateway, ParsedPaymentEvent, get_gateway

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "webhook"


class PurchaseError(StudioError):
    pass


@dataclass(frozen=True, slots=True)
class ResolvedPaymentEvent:
    event: ParsedPaymentEvent
    member: models.Member
    product: models.Product


@dataclass(frozen=True, slots=True)
class UnresolvedPaymentEvent:
    event: ParsedPaymentEvent
    reason: UnresolvedReason
    member: models.Member | None = None


PaymentResolution = Union[ResolvedPaymentEvent, UnresolvedPaymentEvent]


class WebhookStatus(str, PyEnum):
    processed = "processed"
    skipped = "skipped"
    duplicate = "duplicate"
    unresolved = "unresolved"


@dataclass(slots=True)
class PurchaseRecord:
    payment: models.Payment
    grant: models.CreditGrant


@dataclass(slots=True)
class WebhookOutcome:
    status: WebhookStatus
    message: str
    code: ErrorCode | None = None
    record: PurchaseRecord | None = None
    unresolved: models.UnresolvedPayment | None = None
    pending_purchase_id: int | None = None


def _now(clock: Clock | None) -> datetime:
    return (clock or system_clock).now()


def _is_duplicate_transaction(exc: IntegrityError) -> bool:
    constraint = violated_constraint(exc)
    return (
        "uq_payment_external_transaction_id" in constraint
        or "payments.external_transaction_id" in constraint
    )


def _grant_kind(terms: CreditTerms) -> GrantKind:
    if terms.kind == ProductKind.membership:
        return GrantKind.membership
    return GrantKind.package


def _record_purchase(
    db: Session,
    *,
    member_id: int,
    terms: CreditTerms,
    amount: Decimal,
    method: PaymentMethod,
    external_transaction_id: str,
    now: datetime,
    pending_purchase_id: int | None = None,
    valid_from: datetime | None = None,
) -> PurchaseRecord:
    payment = models.Payment(
        member_id=member_id,
        amount=amount,
        currency=get_settings().payment_currency,
        method=method,
        external_transaction_id=external_transaction_id,
        pending_purchase_id=pending_purchase_id,
        created_at=now,
    )
    db.add(payment)
    db.flush()
    grant = credit_ledger.grant(
        db,
        member_id,
        terms.credits_total,
        terms.expires_at(valid_from or now),
        kind=_grant_kind(terms),
        now=now,
        product_id=terms.product_id,
        payment_id=payment.id,
    )
    return PurchaseRecord(payment=payment, grant=grant)


def _payment_notification(
    member_id: int,
    record: PurchaseRecord,
    product_name: str,
    event_type: NotificationEvent = NotificationEvent.payment_confirmed,
) -> Notification:
    expires_at = record.grant.expires_at
    return Notification(
        member_id=member_id,
        event_type=event_type,
        payload={
            "payment_id": record.payment.id,
            "grant_id": record.grant.id,
            "product_name": product_name,
            "credits": record.grant.credits_total,
            "unlimited": record.grant.is_unlimited,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )


def _get_product(db: Session, product_id: int) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None:
        raise PurchaseError(ErrorCode.not_found, "Product not found")
    return product


def _get_member(db: Session, member_id: int) -> models.Member:
    member = db.get(models.Member, member_id)
    if member is None:
        raise PurchaseError(ErrorCode.not_found, "Member not found")
    return member


def find_member_by_email(db: Session, email: str | None) -> models.Member | None:
    if not email:
        return None
    return db.execute(
        select(models.Member).where(func.lower(models.Member.email) == email.strip().lower())
    ).scalar_one_or_none()


def create_pending_purchase(
    db: Session,
    member_id: int,
    product_id: int,
    *,
    notes: str | None = None,
    clock: Clock | None = None,
) -> models.PendingPurchase:
    """Record a member's intent to pay for a product outside the gateway."""
    _get_member(db, member_id)
    product = _get_product(db, product_id)
    if not product.is_active:
        raise PurchaseError(ErrorCode.not_found, "Product is not on sale")
    pending = models.PendingPurchase(
        member_id=member_id,
        product_id=product.id,
        product_name=product.name,
        product_kind=product.kind,
        amount=product.price,
        status=PendingPurchaseStatus.pending,
        notes=notes,
        created_at=_now(clock),
    )
    db.add(pending)
    db.commit()
    db.refresh(pending)
    logger.info(
        "Pending purchase created",
        extra={"pending_purchase_id": pending.id, "member_id": member_id, "product_id": product_id},
    )
    return pending


def list_pending_purchases(
    db: Session, status: PendingPurchaseStatus | None = PendingPurchaseStatus.pending
) -> list[models.PendingPurchase]:
    stmt = select(models.PendingPurchase).order_by(
        models.PendingPurchase.created_at, models.PendingPurchase.id
    )
    if status is not None:
        stmt = stmt.where(models.PendingPurchase.status == status)
    return list(db.execute(stmt).scalars().all())


def _lock_pending(db: Session, pending_id: int) -> models.PendingPurchase:
    pending = db.execute(
        select(models.PendingPurchase)
        .where(models.PendingPurchase.id == pending_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if pending is None:
        raise PurchaseError(ErrorCode.not_found, "Pending purchase not found")
    if pending.status != PendingPurchaseStatus.pending:
        raise PurchaseError(ErrorCode.already_processed, "Purchase already processed")
    return pending


def confirm_pending_purchase(
    db: Session,
    pending_id: int,
    *,
    admin: str,
    admin_id: int | None = None,
    external_transaction_id: str | None = None,
    catalog: PricingCatalog | None = None,
    gateway: BasePaymentGateway | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> PurchaseRecord:
    """Admin confirms that money for a pending purchase arrived.

    A supplied ``external_transaction_id`` is stored in the gateway's own
    format, so a later webhook for the same charge is a duplicate.

    Raises:
        PurchaseError: ``NOT_FOUND`` for unknown ids, ``ALREADY_PROCESSED``
            once the purchase left the pending state or its transaction id is
            already recorded.
    """
    now = _now(clock)
    catalog = catalog or DatabaseCatalog(db)
    if external_transaction_id and external_transaction_id.strip():
        gateway = gateway or get_gateway(get_settings())
        transaction_id = gateway.transaction_id(external_transaction_id, {})
    else:
        transaction_id = f"{ADMIN_TRANSACTION_PREFIX}-{pending_id}"
    with purchase_locks.hold(pending_id):
        try:
            with atomic(db):
                pending = _lock_pending(db, pending_id)
                terms = catalog.get_product_credit_terms(pending.product_id)
                record = _record_purchase(
                    db,
                    member_id=pending.member_id,
                    terms=terms,
                    amount=Decimal(str(pending.amount)),
                    method=PaymentMethod.admin,
                    external_transaction_id=transaction_id,
                    now=now,
                    pending_purchase_id=pending.id,
                )
                pending.status = PendingPurchaseStatus.confirmed
                pending.resolved_at = now
                pending.resolved_by = admin
                db.add(
                    models.AuditLog(
                        actor_type=models.ActorType.admin,
                        actor_id=admin_id,
                        action="pending_purchase_confirmed",
                        payload={
                            "pending_purchase_id": pending.id,
                            "payment_id": record.payment.id,
                            "grant_id": record.grant.id,
                        },
                    )
                )
        except IntegrityError as exc:
            if _is_duplicate_transaction(exc):
                raise PurchaseError(
                    ErrorCode.already_processed, "Transaction already recorded"
                ) from exc
            raise
    logger.info(
        "Pending purchase confirmed",
        extra={"pending_purchase_id": pending_id, "payment_id": record.payment.id},
    )
    dispatch(dispatcher, [_payment_notification(pending.member_id, record, terms.name)])
    return record


def cancel_pending_purchase(
    db: Session,
    pending_id: int,
    *,
    admin: str,
    admin_id: int | None = None,
    reason: str | None = None,
    clock: Clock | None = None,
) -> models.PendingPurchase:
    now = _now(clock)
    with purchase_locks.hold(pending_id):
        with atomic(db):
            pending = _lock_pending(db, pending_id)
            pending.status = PendingPurchaseStatus.cancelled
            pending.resolved_at = now
            pending.resolved_by = admin
            if reason:
                pending.notes = f"{pending.notes}\n{reason}" if pending.notes else reason
            db.add(
                models.AuditLog(
                    actor_type=models.ActorType.admin,
                    actor_id=admin_id,
                    action="pending_purchase_cancelled",
                    payload={"pending_purchase_id": pending.id, "reason": reason},
                )
            )
    return pending


def resolve_event(db: Session, event: ParsedPaymentEvent) -> PaymentResolution:
    """Match a parsed event to a member (by email) and a product (by link, then price)."""
    if not event.email:
        return UnresolvedPaymentEvent(event=event, reason=UnresolvedReason.missing_email)
    member = find_member_by_email(db, event.email)
    if member is None:
        return UnresolvedPaymentEvent(event=event, reason=UnresolvedReason.member_not_found)
    product = find_product_by_link(db, event.link_id) or find_product_by_price(db, event.amount)
    if product is None:
        return UnresolvedPaymentEvent(
            event=event, reason=UnresolvedReason.product_not_identified, member=member
        )
    return ResolvedPaymentEvent(event=event, member=member, product=product)


def _find_payment(db: Session, external_transaction_id: str) -> models.Payment | None:
    return db.execute(
        select(models.Payment).where(
            models.Payment.external_transaction_id == external_transaction_id
        )
    ).scalar_one_or_none()


def _store_unresolved(
    db: Session, resolution: UnresolvedPaymentEvent, now: datetime
) -> models.UnresolvedPayment:
    event = resolution.event
    existing = db.execute(
        select(models.UnresolvedPayment).where(
            models.UnresolvedPayment.external_transaction_id == event.external_transaction_id
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing
    row = models.UnresolvedPayment(
        reason=resolution.reason,
        status=UnresolvedStatus.open,
        email=event.email,
        link_id=event.link_id,
        amount=event.amount,
        external_transaction_id=event.external_transaction_id,
        payload=event.raw,
        created_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _oldest_pending(
    db: Session, member_id: int, product_id: int
) -> models.PendingPurchase | None:
    return (
        db.execute(
            select(models.PendingPurchase)
            .where(models.PendingPurchase.member_id == member_id)
            .where(models.PendingPurchase.product_id == product_id)
            .where(models.PendingPurchase.status == PendingPurchaseStatus.pending)
            .order_by(models.PendingPurchase.created_at, models.PendingPurchase.id)
            .with_for_update()
        )
        .scalars()
        .first()
    )


def process_payment_webhook(
    db: Session,
    payload: dict[str, Any],
    *,
    gateway: BasePaymentGateway | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> WebhookOutcome:
    """Grant credits for a completed gateway charge.

    Every outcome is an acknowledgement: duplicates and unmatched events are
    reported through ``WebhookOutcome.code`` rather than raised, so the
    gateway does not retry.
    """
    now = _now(clock)
    gateway = gateway or get_gateway(get_settings())
    event = gateway.parse_webhook(payload)
    if not event.completed:
        logger.info(
            "Skipping non-completed payment",
            extra={"status": event.status, "transaction_id": event.external_transaction_id},
        )
        return WebhookOutcome(status=WebhookStatus.skipped, message="not_completed")

    duplicate = WebhookOutcome(
        status=WebhookStatus.duplicate,
        message="Transaction already processed",
        code=ErrorCode.duplicate_delivery,
    )
    if _find_payment(db, event.external_transaction_id) is not None:
        logger.info(
            "Duplicate webhook delivery",
            extra={"transaction_id": event.external_transaction_id},
        )
        return duplicate

    resolution = resolve_event(db, event)
    if isinstance(resolution, UnresolvedPaymentEvent):
        row = _store_unresolved(db, resolution, now)
        logger.warning(
            "Payment queued for manual review",
            extra={
                "reason": resolution.reason.value,
                "email": event.email,
                "transaction_id": event.external_transaction_id,
            },
        )
        return WebhookOutcome(
            status=WebhookStatus.unresolved,
            message=f"{resolution.reason.value}: credits need to be added manually",
            code=ErrorCode.unresolved_payment,
            unresolved=row,
        )

    terms = terms_for_product(resolution.product)
    try:
        with atomic(db):
            pending = _oldest_pending(db, resolution.member.id, resolution.product.id)
            record = _record_purchase(
                db,
                member_id=resolution.member.id,
                terms=terms,
                amount=event.amount if event.amount is not None else terms.price,
                method=PaymentMethod.swipesimple,
                external_transaction_id=event.external_transaction_id,
                now=now,
                pending_purchase_id=pending.id if pending else None,
            )
            if pending is not None:
                pending.status = PendingPurchaseStatus.confirmed
                pending.resolved_at = now
                pending.resolved_by = WEBHOOK_ACTOR
    except IntegrityError as exc:
        if _is_duplicate_transaction(exc):
            logger.info(
                "Duplicate webhook delivery",
                extra={"transaction_id": event.external_transaction_id},
            )
            return duplicate
        raise
    logger.info(
        "Credits granted from webhook",
        extra={
            "member_id": resolution.member.id,
            "product_id": resolution.product.id,
            "payment_id": record.payment.id,
        },
    )
    dispatch(dispatcher, [_payment_notification(resolution.member.id, record, terms.name)])
    return WebhookOutcome(
        status=WebhookStatus.processed,
        message=f"Credits added for {resolution.member.email}",
        record=record,
        pending_purchase_id=pending.id if pending else None,
    )


def list_unresolved_payments(
    db: Session, status: UnresolvedStatus | None = UnresolvedStatus.open
) -> list[models.UnresolvedPayment]:
    stmt = select(models.UnresolvedPayment).order_by(
        models.UnresolvedPayment.created_at, models.UnresolvedPayment.id
    )
    if status is not None:
        stmt = stmt.where(models.UnresolvedPayment.status == status)
    return list(db.execute(stmt).scalars().all())


def _lock_unresolved(db: Session, unresolved_id: int) -> models.UnresolvedPayment:
    row = db.execute(
        select(models.UnresolvedPayment)
        .where(models.UnresolvedPayment.id == unresolved_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if row is None:
        raise PurchaseError(ErrorCode.not_found, "Unresolved payment not found")
    if row.status != UnresolvedStatus.open:
        raise PurchaseError(ErrorCode.already_processed, "Payment already processed")
    return row


def resolve_unresolved_payment(
    db: Session,
    unresolved_id: int,
    *,
    member_id: int,
    product_id: int,
    admin: str,
    admin_id: int | None = None,
    catalog: PricingCatalog | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> PurchaseRecord:
    """Assign a queued webhook event to a member and product and grant it."""
    now = _now(clock)
    catalog = catalog or DatabaseCatalog(db)
    _get_member(db, member_id)
    try:
        with atomic(db):
            row = _lock_unresolved(db, unresolved_id)
            terms = catalog.get_product_credit_terms(product_id)
            record = _record_purchase(
                db,
                member_id=member_id,
                terms=terms,
                amount=Decimal(str(row.amount)) if row.amount is not None else terms.price,
                method=PaymentMethod.swipesimple,
                external_transaction_id=row.external_transaction_id
                or f"{MANUAL_TRANSACTION_PREFIX}-UNRESOLVED-{row.id}",
                now=now,
            )
            row.status = UnresolvedStatus.resolved
            row.resolved_at = now
            row.payment_id = record.payment.id
            db.add(
                models.AuditLog(
                    actor_type=models.ActorType.admin,
                    actor_id=admin_id,
                    action="unresolved_payment_resolved",
                    payload={
                        "unresolved_payment_id": row.id,
                        "member_id": member_id,
                        "product_id": product_id,
                        "payment_id": record.payment.id,
                        "admin": admin,
                    },
                )
            )
    except IntegrityError as exc:
        if _is_duplicate_transaction(exc):
            raise PurchaseError(
                ErrorCode.already_processed, "Transaction already recorded"
            ) from exc
        raise
    dispatch(dispatcher, [_payment_notification(member_id, record, terms.name)])
    return record


def dismiss_unresolved_payment(
    db: Session,
    unresolved_id: int,
    *,
    admin: str,
    admin_id: int | None = None,
    clock: Clock | None = None,
) -> models.UnresolvedPayment:
    now = _now(clock)
    with atomic(db):
        row = _lock_unresolved(db, unresolved_id)
        row.status = UnresolvedStatus.dismissed
        row.resolved_at = now
        db.add(
            models.AuditLog(
                actor_type=models.ActorType.admin,
                actor_id=admin_id,
                action="unresolved_payment_dismissed",
                payload={"unresolved_payment_id": row.id, "admin": admin},
            )
        )
    return row


def grant_manual_credits(
    db: Session,
    *,
    member_ids: list[int],
    credits: int,
    expiration_days: int | None = None,
    product_id: int | None = None,
    notes: str | None = None,
    admin: str,
    admin_id: int | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> list[PurchaseRecord]:
    """Add credits to several members at once, each with a zero-amount payment."""
    if credits <= 0:
        raise ValueError("credits must be positive")
    if not member_ids:
        return []
    now = _now(clock)
    product = _get_product(db, product_id) if product_id is not None else None
    if expiration_days is None and product is not None:
        expiration_days = terms_for_product(product).expiration_days
    expires_at = now + timedelta(days=expiration_days) if expiration_days else None
    members = [_get_member(db, member_id) for member_id in dict.fromkeys(member_ids)]
    records: list[PurchaseRecord] = []
    with atomic(db):
        for member in members:
            payment = models.Payment(
                member_id=member.id,
                amount=Decimal("0"),
                currency=get_settings().payment_currency,
                method=PaymentMethod.manual,
                external_transaction_id=f"{MANUAL_TRANSACTION_PREFIX}-{uuid.uuid4().hex}",
                created_at=now,
            )
            db.add(payment)
            db.flush()
            grant = credit_ledger.grant(
                db,
                member.id,
                credits,
                expires_at,
                kind=GrantKind.manual,
                now=now,
                product_id=product.id if product else None,
                payment_id=payment.id,
            )
            records.append(PurchaseRecord(payment=payment, grant=grant))
        db.add(
            models.AuditLog(
                actor_type=models.ActorType.admin,
                actor_id=admin_id,
                action="manual_credits_granted",
                payload={
                    "member_ids": [member.id for member in members],
                    "credits": credits,
                    "expiration_days": expiration_days,
                    "product_id": product_id,
                    "notes": notes,
                    "admin": admin,
                },
            )
        )
    logger.info(
        "Manual credits granted",
        extra={"members": len(members), "credits": credits, "admin": admin},
    )
    label = product.name if product else "Manual credit adjustment"
    dispatch(
        dispatcher,
        [_payment_notification(record.grant.member_id, record, label) for record in records],
    )
    return records


class RenewalStatus(str, PyEnum):
    renewed = "renewed"
    skipped = "skipped"
    failed = "failed"


@dataclass(slots=True)
class RenewalOutcome:
    grant_id: int
    member_id: int
    status: RenewalStatus
    record: PurchaseRecord | None = None
    error: str | None = None


def _lock_grant(db: Session, grant_id: int) -> models.CreditGrant:
    grant = db.execute(
        select(models.CreditGrant)
        .where(models.CreditGrant.id == grant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if grant is None:
        raise PurchaseError(ErrorCode.not_found, "Credit grant not found")
    return grant


def set_auto_renew(
    db: Session,
    grant_id: int,
    enabled: bool,
    *,
    member_id: int | None = None,
) -> models.CreditGrant:
    """Switch renewal on or off for a membership grant.

    ``member_id`` restricts the change to that member's own grants.
    """
    with atomic(db):
        grant = _lock_grant(db, grant_id)
        if member_id is not None and grant.member_id != member_id:
            raise PurchaseError(ErrorCode.not_found, "Credit grant not found")
        if grant.kind != GrantKind.membership or grant.product_id is None:
            raise PurchaseError(
                ErrorCode.invalid_state_transition,
                "Auto renewal is only available for purchased memberships",
            )
        if enabled and (not grant.is_active or grant.renewed_by_grant_id is not None):
            raise PurchaseError(
                ErrorCode.invalid_state_transition, "Membership period is already closed"
            )
        grant.auto_renew = enabled
    logger.info("Auto renewal updated", extra={"grant_id": grant_id, "auto_renew": enabled})
    return grant


def _renew_membership(
    db: Session, grant_id: int, *, now: datetime, catalog: PricingCatalog
) -> RenewalOutcome:
    with atomic(db):
        grant = _lock_grant(db, grant_id)
        outcome = RenewalOutcome(
            grant_id=grant.id, member_id=grant.member_id, status=RenewalStatus.skipped
        )
        if not grant.auto_renew or grant.renewed_by_grant_id is not None:
            return outcome
        product = _get_product(db, grant.product_id)
        if not product.is_active:
            raise PurchaseError(ErrorCode.not_found, "Product is not on sale")
        terms = catalog.get_product_credit_terms(product.id)
        period_start = ensure_aware(grant.expires_at)
        record = _record_purchase(
            db,
            member_id=grant.member_id,
            terms=terms,
            amount=terms.price,
            method=PaymentMethod.renewal,
            external_transaction_id=(
                f"{RENEWAL_TRANSACTION_PREFIX}-{grant.id}-{period_start:%Y%m%d}"
            ),
            now=now,
            valid_from=period_start,
        )
        record.grant.auto_renew = True
        grant.auto_renew = False
        grant.renewed_by_grant_id = record.grant.id
        db.add(
            models.AuditLog(
                actor_type=models.ActorType.system,
                action="membership_renewed",
                payload={
                    "grant_id": grant.id,
                    "renewal_grant_id": record.grant.id,
                    "payment_id": record.payment.id,
                    "actor": SYSTEM_ACTOR,
                },
            )
        )
    outcome.status = RenewalStatus.renewed
    outcome.record = record
    return outcome


def renew_memberships(
    db: Session,
    *,
    catalog: PricingCatalog | None = None,
    clock: Clock | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> list[RenewalOutcome]:
    """Renew auto-renewing memberships that expire within the lead window.

    Each renewal writes a Payment and a follow-on grant that starts where the
    old one ends. The transaction id is derived from the grant and its period,
    so overlapping sweeps record a period once. Charging the member happens at
    the gateway; this only books the result into the ledger.
    """
    now = _now(clock)
    catalog = catalog or DatabaseCatalog(db)
    horizon = now + timedelta(hours=get_settings().renewal_lead_hours)
    due = (
        db.execute(
            select(models.CreditGrant.id, models.CreditGrant.member_id)
            .where(models.CreditGrant.kind == GrantKind.membership)
            .where(models.CreditGrant.auto_renew.is_(True))
            .where(models.CreditGrant.is_active.is_(True))
            .where(models.CreditGrant.renewed_by_grant_id.is_(None))
            .where(models.CreditGrant.product_id.is_not(None))
            .where(models.CreditGrant.expires_at >= now)
            .where(models.CreditGrant.expires_at <= horizon)
            .order_by(models.CreditGrant.expires_at, models.CreditGrant.id)
        )
        .all()
    )
    outcomes: list[RenewalOutcome] = []
    notifications: list[Notification] = []
    for grant_id, member_id in due:
        try:
            outcome = _renew_membership(db, grant_id, now=now, catalog=catalog)
        except IntegrityError as exc:
            if not _is_duplicate_transaction(exc):
                raise
            outcome = RenewalOutcome(
                grant_id=grant_id, member_id=member_id, status=RenewalStatus.skipped
            )
        except (StudioError, StaleDataError) as exc:
            logger.warning(
                "Membership renewal failed",
                extra={"grant_id": grant_id, "member_id": member_id, "error": str(exc)},
            )
            outcome = RenewalOutcome(
                grant_id=grant_id,
                member_id=member_id,
                status=RenewalStatus.failed,
                error=str(exc),
            )
        if outcome.record is not None:
            notifications.append(
                _payment_notification(
                    member_id,
                    outcome.record,
                    outcome.record.grant.product.name,
                    NotificationEvent.membership_renewed,
                )
            )
        outcomes.append(outcome)
    logger.info(
        "Membership renewal sweep finished",
        extra={
            "due": len(due),
            "renewed": sum(item.status == RenewalStatus.renewed for item in outcomes),
        },
    )
    dispatch(dispatcher, notifications)
    return outcomes


__all__ = [
    "PurchaseError",
    "ResolvedPaymentEvent",
    "UnresolvedPaymentEvent",
    "PaymentResolution",
    "WebhookStatus",
    "WebhookOutcome",
    "PurchaseRecord",
    "find_member_by_email",
    "create_pending_purchase",
    "list_pending_purchases",
    "confirm_pending_purchase",
    "cancel_pending_purchase",
    "resolve_event",
    "process_payment_webhook",
    "list_unresolved_payments",
    "resolve_unresolved_payment",
    "dismiss_unresolved_payment",
    "grant_manual_credits",
    "RenewalStatus",
    "RenewalOutcome",
    "set_auto_renew",
    "renew_memberships",
]
