from datetime import timedelta

import pytest

from studio_reservations.core.errors import ErrorCode
from studio_reservations.db.models.booking import BookingStatus
from studio_reservations.services import booking_service, class_registry, waitlist_service
from studio_reservations.services.notification_service import NotificationEvent
from studio_reservations.services.waitlist_service import WaitlistError


def fill_class(db_session, clock, dispatcher, studio_class, member):
    return booking_service.request_booking(
        db_session,
        class_id=studio_class.id,
        member_id=member.id,
        clock=clock,
        dispatcher=dispatcher,
    ).booking


def full_class(db_session, clock, dispatcher, make_class, make_member, give_credits):
    studio_class = make_class(capacity=1)
    holder = make_member()
    give_credits(holder)
    fill_class(db_session, clock, dispatcher, studio_class, holder)
    return studio_class


def queue_behind_free_seats(db_session, clock, studio_class, member):
    # Entries left over from when the class was full
    entry = waitlist_service.append_entry(db_session, studio_class, member.id, now=clock.now())
    db_session.commit()
    return entry


def positions(db_session, studio_class):
    return [
        (entry.member_id, entry.position)
        for entry in waitlist_service.list_entries(db_session, studio_class.id)
    ]


def test_join_appends_in_fifo_order(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = full_class(db_session, clock, dispatcher, make_class, make_member, give_credits)
    members = [make_member() for _ in range(3)]

    for member in members:
        waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    assert positions(db_session, studio_class) == [
        (members[0].id, 1),
        (members[1].id, 2),
        (members[2].id, 3),
    ]
    assert waitlist_service.position_of(db_session, studio_class.id, members[2].id) == 3


def test_join_twice_is_rejected(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = full_class(db_session, clock, dispatcher, make_class, make_member, give_credits)
    member = make_member()
    waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    with pytest.raises(WaitlistError) as excinfo:
        waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    assert excinfo.value.code == ErrorCode.duplicate_waitlist_entry


def test_cannot_join_while_seats_are_free(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = make_class(capacity=2)
    early, late = make_member(), make_member()
    give_credits(early)
    give_credits(late)

    with pytest.raises(WaitlistError) as excinfo:
        waitlist_service.join(db_session, studio_class.id, early.id, clock=clock)

    assert excinfo.value.code == ErrorCode.class_not_available
    assert waitlist_service.list_entries(db_session, studio_class.id) == []
    fill_class(db_session, clock, dispatcher, studio_class, late)
    booking = fill_class(db_session, clock, dispatcher, studio_class, early)
    assert booking.status == BookingStatus.confirmed
    assert class_registry.confirmed_seat_count(db_session, studio_class.id) == 2


def test_booked_member_cannot_join(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = make_class(capacity=2)
    member = make_member()
    give_credits(member)
    fill_class(db_session, clock, dispatcher, studio_class, member)

    with pytest.raises(WaitlistError) as excinfo:
        waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    assert excinfo.value.code == ErrorCode.duplicate_booking


def test_cannot_join_started_class(db_session, clock, make_member, make_class):
    studio_class = make_class(starts_in=timedelta(minutes=30))
    member = make_member()
    clock.advance(timedelta(hours=1))

    with pytest.raises(WaitlistError) as excinfo:
        waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    assert excinfo.value.code == ErrorCode.class_not_available


def test_leave_keeps_positions_dense(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = full_class(db_session, clock, dispatcher, make_class, make_member, give_credits)
    members = [make_member() for _ in range(4)]
    for member in members:
        waitlist_service.join(db_session, studio_class.id, member.id, clock=clock)

    waitlist_service.leave(db_session, studio_class.id, members[1].id)

    assert positions(db_session, studio_class) == [
        (members[0].id, 1),
        (members[2].id, 2),
        (members[3].id, 3),
    ]
    with pytest.raises(WaitlistError) as excinfo:
        waitlist_service.leave(db_session, studio_class.id, members[1].id)
    assert excinfo.value.code == ErrorCode.not_found


def test_promotion_skips_members_without_credits(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = make_class(capacity=1)
    holder, broke, funded = make_member(), make_member(), make_member()
    give_credits(holder)
    give_credits(funded)
    booking = fill_class(db_session, clock, dispatcher, studio_class, holder)
    waitlist_service.join(db_session, studio_class.id, broke.id, clock=clock)
    waitlist_service.join(db_session, studio_class.id, funded.id, clock=clock)

    outcome = booking_service.cancel_booking(
        db_session, booking.id, actor="member", clock=clock, dispatcher=dispatcher
    )

    assert [promoted.member_id for promoted in outcome.promoted] == [funded.id]
    assert outcome.promoted[0].status == BookingStatus.confirmed
    assert positions(db_session, studio_class) == [(broke.id, 1)]
    entry = waitlist_service.find_entry(db_session, studio_class.id, broke.id)
    assert entry.notified is True
    opened = dispatcher.events(NotificationEvent.waitlist_spot_opened)
    assert [(item[0], item[2]["promoted"]) for item in opened] == [
        (broke.id, False),
        (funded.id, True),
    ]


def test_skipped_member_is_notified_only_once(
    db_session, clock, dispatcher, make_member, make_class
):
    studio_class = make_class(capacity=1)
    broke = make_member()
    queue_behind_free_seats(db_session, clock, studio_class, broke)

    first = waitlist_service.promote_next(
        db_session, studio_class.id, clock=clock, dispatcher=dispatcher
    )
    second = waitlist_service.promote_next(
        db_session, studio_class.id, clock=clock, dispatcher=dispatcher
    )

    assert first.skipped_member_ids == [broke.id]
    assert second.skipped_member_ids == [broke.id]
    assert len(first.notifications) == 1
    assert second.notifications == []
    assert len(dispatcher.events(NotificationEvent.waitlist_spot_opened)) == 1


def test_promote_next_fills_every_free_seat(
    db_session, clock, dispatcher, make_member, make_class, give_credits
):
    studio_class = make_class(capacity=2)
    members = [make_member() for _ in range(3)]
    for member in members:
        give_credits(member)
        queue_behind_free_seats(db_session, clock, studio_class, member)

    result = waitlist_service.promote_next(
        db_session, studio_class.id, clock=clock, dispatcher=dispatcher
    )

    assert [booking.member_id for booking in result.promoted] == [members[0].id, members[1].id]
    assert positions(db_session, studio_class) == [(members[2].id, 1)]
