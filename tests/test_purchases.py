from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from studio_reservations.config import get_settings
from studio_reservations.core.errors import ErrorCode
from studio_reservations.db import models
from studio_reservations.db.models.credit_grant import GrantKind
from studio_reservations.db.models.payment import PaymentMethod
from studio_reservations.db.models.pending_purchase import PendingPurchaseStatus
from studio_reservations.db.models.product import ProductKind
from studio_reservations.db.models.unresolved_payment import UnresolvedReason, UnresolvedStatus
from studio_reservations.services import credit_ledger, purchase_service
from studio_reservations.services.notification_service import NotificationEvent
from studio_reservations.services.payments import SwipeSimpleGateway
from studio_reservations.services.purchase_service import PurchaseError, WebhookStatus


def swipe_payload(email, transaction_id="ch_1001", amount=18000, status="completed", **extra):
    payment = {"id": transaction_id, "status": status, "amount": amount}
    payment.update(extra)
    return {"payment": payment, "customer": {"email": email}}


def deliver(db_session, clock, dispatcher, payload):
    return purchase_service.process_payment_webhook(
        db_session,
        payload,
        gateway=SwipeSimpleGateway(get_settings()),
        clock=clock,
        dispatcher=dispatcher,
    )


def all_rows(db_session, model):
    return db_session.execute(select(model)).scalars().all()


def test_admin_confirmation_grants_package_credits(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product()
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, product.id, clock=clock
    )
    assert pending.status == PendingPurchaseStatus.pending
    assert Decimal(str(pending.amount)) == Decimal("180.00")

    record = purchase_service.confirm_pending_purchase(
        db_session, pending.id, admin="front-desk", admin_id=1, clock=clock, dispatcher=dispatcher
    )

    assert record.grant.credits_total == 10
    assert record.grant.credits_remaining == 10
    assert record.grant.kind == GrantKind.package
    assert record.grant.expires_at.replace(tzinfo=None) == (
        clock.now() + timedelta(days=90)
    ).replace(tzinfo=None)
    payments = all_rows(db_session, models.Payment)
    assert len(payments) == 1
    assert payments[0].method == PaymentMethod.admin
    assert payments[0].external_transaction_id == f"ADMIN-{pending.id}"
    assert payments[0].pending_purchase_id == pending.id
    db_session.refresh(pending)
    assert pending.status == PendingPurchaseStatus.confirmed
    assert pending.resolved_by == "front-desk"
    assert [item[0] for item in dispatcher.events(NotificationEvent.payment_confirmed)] == [
        member.id
    ]


def test_confirming_twice_is_already_processed(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, make_product().id, clock=clock
    )
    purchase_service.confirm_pending_purchase(
        db_session, pending.id, admin="admin", clock=clock, dispatcher=dispatcher
    )

    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.confirm_pending_purchase(
            db_session, pending.id, admin="admin", clock=clock, dispatcher=dispatcher
        )

    assert excinfo.value.code == ErrorCode.already_processed
    assert len(all_rows(db_session, models.CreditGrant)) == 1


def test_reused_transaction_id_is_already_processed(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product()
    first = purchase_service.create_pending_purchase(db_session, member.id, product.id, clock=clock)
    second = purchase_service.create_pending_purchase(db_session, member.id, product.id, clock=clock)
    purchase_service.confirm_pending_purchase(
        db_session,
        first.id,
        admin="admin",
        external_transaction_id="CASH-42",
        clock=clock,
        dispatcher=dispatcher,
    )

    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.confirm_pending_purchase(
            db_session,
            second.id,
            admin="admin",
            external_transaction_id="CASH-42",
            clock=clock,
            dispatcher=dispatcher,
        )

    assert excinfo.value.code == ErrorCode.already_processed
    db_session.refresh(second)
    assert second.status == PendingPurchaseStatus.pending


def test_cancelled_pending_purchase_cannot_be_confirmed(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, make_product().id, notes="Paid at desk?", clock=clock
    )

    cancelled = purchase_service.cancel_pending_purchase(
        db_session, pending.id, admin="admin", reason="No payment received", clock=clock
    )

    assert cancelled.status == PendingPurchaseStatus.cancelled
    assert "No payment received" in cancelled.notes
    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.confirm_pending_purchase(
            db_session, pending.id, admin="admin", clock=clock, dispatcher=dispatcher
        )
    assert excinfo.value.code == ErrorCode.already_processed
    assert purchase_service.list_pending_purchases(db_session) == []


def test_membership_purchase_is_unlimited_for_a_period(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product(
        name="Monthly Unlimited",
        kind=ProductKind.membership,
        price="150.00",
        credits=None,
        expiration_days=None,
    )
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, product.id, clock=clock
    )

    record = purchase_service.confirm_pending_purchase(
        db_session, pending.id, admin="admin", clock=clock, dispatcher=dispatcher
    )

    assert record.grant.kind == GrantKind.membership
    assert record.grant.is_unlimited
    assert record.grant.expires_at.replace(tzinfo=None) == (
        clock.now() + timedelta(days=30)
    ).replace(tzinfo=None)
    assert credit_ledger.balance(db_session, member.id, now=clock.now()).unlimited is True


def test_webhook_delivered_twice_grants_once(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member(email="Dancer@Example.com")
    make_product()
    payload = swipe_payload("dancer@example.com")

    first = deliver(db_session, clock, dispatcher, payload)
    second = deliver(db_session, clock, dispatcher, payload)

    assert first.status == WebhookStatus.processed
    assert first.record.payment.external_transaction_id == "SWIPE-ch_1001"
    assert first.record.payment.method == PaymentMethod.swipesimple
    assert Decimal(str(first.record.payment.amount)) == Decimal("180.00")
    assert second.status == WebhookStatus.duplicate
    assert second.code == ErrorCode.duplicate_delivery
    assert len(all_rows(db_session, models.Payment)) == 1
    assert len(all_rows(db_session, models.CreditGrant)) == 1
    assert credit_ledger.balance(db_session, member.id, now=clock.now()).credits == 10
    assert len(dispatcher.events(NotificationEvent.payment_confirmed)) == 1


def test_webhook_after_admin_confirmation_of_same_charge_is_duplicate(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product()
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, product.id, clock=clock
    )
    record = purchase_service.confirm_pending_purchase(
        db_session,
        pending.id,
        admin="front-desk",
        external_transaction_id="ch_555",
        gateway=SwipeSimpleGateway(get_settings()),
        clock=clock,
        dispatcher=dispatcher,
    )

    outcome = deliver(
        db_session, clock, dispatcher, swipe_payload(member.email, transaction_id="ch_555")
    )

    assert record.payment.external_transaction_id == "SWIPE-ch_555"
    assert outcome.status == WebhookStatus.duplicate
    assert outcome.code == ErrorCode.duplicate_delivery
    assert len(all_rows(db_session, models.CreditGrant)) == 1
    assert credit_ledger.balance(db_session, member.id, now=clock.now()).credits == 10


def test_admin_confirmation_after_webhook_of_same_charge_is_rejected(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product()
    deliver(db_session, clock, dispatcher, swipe_payload(member.email, transaction_id="ch_556"))
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, product.id, clock=clock
    )

    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.confirm_pending_purchase(
            db_session,
            pending.id,
            admin="front-desk",
            external_transaction_id="SWIPE-ch_556",
            gateway=SwipeSimpleGateway(get_settings()),
            clock=clock,
            dispatcher=dispatcher,
        )

    assert excinfo.value.code == ErrorCode.already_processed
    assert len(all_rows(db_session, models.CreditGrant)) == 1


@pytest.mark.parametrize("amount", [float("inf"), 10**40])
def test_unusable_webhook_amount_is_queued(
    db_session, clock, dispatcher, make_member, make_product, amount
):
    member = make_member()
    make_product()

    outcome = deliver(db_session, clock, dispatcher, swipe_payload(member.email, amount=amount))

    assert outcome.status == WebhookStatus.unresolved
    assert outcome.unresolved.reason == UnresolvedReason.product_not_identified
    assert outcome.unresolved.amount is None
    assert all_rows(db_session, models.Payment) == []


def test_webhook_prefers_payment_link_over_price(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    make_product(name="Drop In", price="25.00", credits=1, payment_link_id="lnk_drop")
    five_pack = make_product(name="5 Pack", price="25.00", credits=5, payment_link_id="lnk_five")

    outcome = deliver(
        db_session, clock, dispatcher, swipe_payload(member.email, amount=2500, link_id="lnk_five")
    )

    assert outcome.record.grant.product_id == five_pack.id
    assert outcome.record.grant.credits_total == 5


def test_webhook_confirms_oldest_pending_purchase(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = make_product()
    older = purchase_service.create_pending_purchase(db_session, member.id, product.id, clock=clock)
    clock.advance(timedelta(minutes=5))
    newer = purchase_service.create_pending_purchase(db_session, member.id, product.id, clock=clock)

    outcome = deliver(db_session, clock, dispatcher, swipe_payload(member.email))

    assert outcome.pending_purchase_id == older.id
    db_session.refresh(older)
    db_session.refresh(newer)
    assert older.status == PendingPurchaseStatus.confirmed
    assert older.resolved_by == "webhook"
    assert newer.status == PendingPurchaseStatus.pending


def test_non_completed_webhook_is_skipped(db_session, clock, dispatcher, make_member, make_product):
    member = make_member()
    make_product()

    outcome = deliver(db_session, clock, dispatcher, swipe_payload(member.email, status="declined"))

    assert outcome.status == WebhookStatus.skipped
    assert all_rows(db_session, models.Payment) == []
    assert all_rows(db_session, models.UnresolvedPayment) == []


def test_unknown_member_is_stored_once_and_resolved_later(
    db_session, clock, dispatcher, make_member, make_product
):
    product = make_product()
    payload = swipe_payload("stranger@example.com", transaction_id="ch_2002")

    first = deliver(db_session, clock, dispatcher, payload)
    second = deliver(db_session, clock, dispatcher, payload)

    assert first.status == WebhookStatus.unresolved
    assert first.code == ErrorCode.unresolved_payment
    assert first.unresolved.reason == UnresolvedReason.member_not_found
    assert second.unresolved.id == first.unresolved.id
    assert len(all_rows(db_session, models.UnresolvedPayment)) == 1
    assert all_rows(db_session, models.Payment) == []

    member = make_member(email="stranger.alt@example.com")
    record = purchase_service.resolve_unresolved_payment(
        db_session,
        first.unresolved.id,
        member_id=member.id,
        product_id=product.id,
        admin="admin",
        clock=clock,
        dispatcher=dispatcher,
    )

    assert record.payment.external_transaction_id == "SWIPE-ch_2002"
    assert record.grant.credits_remaining == 10
    db_session.refresh(first.unresolved)
    assert first.unresolved.status == UnresolvedStatus.resolved
    assert first.unresolved.payment_id == record.payment.id
    # The charge is now recorded, so a late redelivery is a duplicate
    assert deliver(db_session, clock, dispatcher, payload).status == WebhookStatus.duplicate

    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.resolve_unresolved_payment(
            db_session,
            first.unresolved.id,
            member_id=member.id,
            product_id=product.id,
            admin="admin",
            clock=clock,
            dispatcher=dispatcher,
        )
    assert excinfo.value.code == ErrorCode.already_processed


def test_unidentified_product_and_missing_email_are_queued(
    db_session, clock, dispatcher, make_member
):
    member = make_member()

    no_product = deliver(
        db_session, clock, dispatcher, swipe_payload(member.email, transaction_id="ch_1", amount=999)
    )
    no_email = deliver(
        db_session, clock, dispatcher, {"payment": {"id": "ch_2", "amount": 18000}}
    )

    assert no_product.unresolved.reason == UnresolvedReason.product_not_identified
    assert no_email.unresolved.reason == UnresolvedReason.missing_email
    assert [row.id for row in purchase_service.list_unresolved_payments(db_session)] == [
        no_product.unresolved.id,
        no_email.unresolved.id,
    ]


def test_dismissed_unresolved_payment_leaves_the_queue(db_session, clock, dispatcher):
    outcome = deliver(db_session, clock, dispatcher, swipe_payload("ghost@example.com"))

    dismissed = purchase_service.dismiss_unresolved_payment(
        db_session, outcome.unresolved.id, admin="admin", clock=clock
    )

    assert dismissed.status == UnresolvedStatus.dismissed
    assert purchase_service.list_unresolved_payments(db_session) == []


def test_manual_grant_creates_zero_amount_payment_per_member(
    db_session, clock, dispatcher, make_member
):
    first, second = make_member(), make_member()

    records = purchase_service.grant_manual_credits(
        db_session,
        member_ids=[first.id, second.id, first.id],
        credits=3,
        expiration_days=14,
        notes="Studio closure make-up",
        admin="owner",
        admin_id=1,
        clock=clock,
        dispatcher=dispatcher,
    )

    assert [record.grant.member_id for record in records] == [first.id, second.id]
    for record in records:
        assert record.payment.method == PaymentMethod.manual
        assert Decimal(str(record.payment.amount)) == Decimal("0")
        assert record.payment.external_transaction_id.startswith("MANUAL-")
        assert record.grant.kind == GrantKind.manual
        assert record.grant.credits_remaining == 3
    assert records[0].payment.external_transaction_id != records[1].payment.external_transaction_id
    audit = db_session.execute(
        select(models.AuditLog).where(models.AuditLog.action == "manual_credits_granted")
    ).scalar_one()
    assert audit.payload["member_ids"] == [first.id, second.id]
    assert len(dispatcher.events(NotificationEvent.payment_confirmed)) == 2


def test_manual_grant_rejects_unknown_member(db_session, clock, dispatcher):
    with pytest.raises(PurchaseError) as excinfo:
        purchase_service.grant_manual_credits(
            db_session, member_ids=[999], credits=1, admin="owner", clock=clock, dispatcher=dispatcher
        )
    assert excinfo.value.code == ErrorCode.not_found


def buy_membership(db_session, clock, dispatcher, member, product):
    pending = purchase_service.create_pending_purchase(
        db_session, member.id, product.id, clock=clock
    )
    return purchase_service.confirm_pending_purchase(
        db_session, pending.id, admin="front-desk", clock=clock, dispatcher=dispatcher
    ).grant


def monthly_product(make_product):
    return make_product(
        name="8 Classes Monthly",
        kind=ProductKind.membership,
        price="120.00",
        credits=8,
        expiration_days=30,
    )


def test_membership_renewal_starts_where_the_old_period_ends(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    grant = buy_membership(db_session, clock, dispatcher, member, monthly_product(make_product))
    purchase_service.set_auto_renew(db_session, grant.id, True, member_id=member.id)
    clock.advance(timedelta(days=29, hours=1))

    outcomes = purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher)

    assert [(item.grant_id, item.status) for item in outcomes] == [
        (grant.id, purchase_service.RenewalStatus.renewed)
    ]
    renewal = outcomes[0].record
    assert renewal.payment.method == PaymentMethod.renewal
    assert renewal.payment.external_transaction_id == f"RENEWAL-{grant.id}-20260401"
    assert Decimal(str(renewal.payment.amount)) == Decimal("120.00")
    assert renewal.grant.credits_total == 8
    assert renewal.grant.auto_renew is True
    assert renewal.grant.expires_at.replace(tzinfo=None) == (
        grant.expires_at.replace(tzinfo=None) + timedelta(days=30)
    )
    db_session.refresh(grant)
    assert grant.auto_renew is False
    assert grant.renewed_by_grant_id == renewal.grant.id
    renewed = dispatcher.events(NotificationEvent.membership_renewed)
    assert [(item[0], item[2]["grant_id"]) for item in renewed] == [(member.id, renewal.grant.id)]

    assert purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher) == []


def test_membership_outside_the_lead_window_is_not_renewed(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    grant = buy_membership(db_session, clock, dispatcher, member, monthly_product(make_product))
    purchase_service.set_auto_renew(db_session, grant.id, True)
    clock.advance(timedelta(days=27))

    assert purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher) == []

    purchase_service.set_auto_renew(db_session, grant.id, False)
    clock.advance(timedelta(days=2, hours=12))
    assert purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher) == []
    assert len(all_rows(db_session, models.Payment)) == 1


def test_period_already_recorded_is_skipped(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    grant = buy_membership(db_session, clock, dispatcher, member, monthly_product(make_product))
    purchase_service.set_auto_renew(db_session, grant.id, True)
    db_session.add(
        models.Payment(
            member_id=member.id,
            amount=Decimal("120.00"),
            method=PaymentMethod.renewal,
            external_transaction_id=f"RENEWAL-{grant.id}-20260401",
            created_at=clock.now(),
        )
    )
    db_session.commit()
    clock.advance(timedelta(days=29, hours=1))

    outcomes = purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher)

    assert [item.status for item in outcomes] == [purchase_service.RenewalStatus.skipped]
    assert len(all_rows(db_session, models.CreditGrant)) == 1
    assert dispatcher.events(NotificationEvent.membership_renewed) == []


def test_renewal_of_discontinued_product_fails_and_keeps_the_flag(
    db_session, clock, dispatcher, make_member, make_product
):
    member = make_member()
    product = monthly_product(make_product)
    grant = buy_membership(db_session, clock, dispatcher, member, product)
    purchase_service.set_auto_renew(db_session, grant.id, True)
    product.is_active = False
    db_session.commit()
    clock.advance(timedelta(days=29, hours=1))

    outcomes = purchase_service.renew_memberships(db_session, clock=clock, dispatcher=dispatcher)

    assert [item.status for item in outcomes] == [purchase_service.RenewalStatus.failed]
    assert outcomes[0].error == "Product is not on sale"
    db_session.refresh(grant)
    assert grant.auto_renew is True
    assert len(all_rows(db_session, models.CreditGrant)) == 1


def test_auto_renew_only_for_own_purchased_memberships(
    db_session, clock, dispatcher, make_member, make_product, give_credits
):
    owner, other = make_member(), make_member()
    membership = buy_membership(
        db_session, clock, dispatcher, owner, monthly_product(make_product)
    )
    package = give_credits(owner)

    with pytest.raises(PurchaseError) as foreign:
        purchase_service.set_auto_renew(db_session, membership.id, True, member_id=other.id)
    with pytest.raises(PurchaseError) as wrong_kind:
        purchase_service.set_auto_renew(db_session, package.id, True)

    assert foreign.value.code == ErrorCode.not_found
    assert wrong_kind.value.code == ErrorCode.invalid_state_transition
    db_session.refresh(membership)
    assert membership.auto_renew is False
