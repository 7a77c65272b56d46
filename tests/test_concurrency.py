import threading
from datetime import timedelta

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from studio_reservations.core.locks import KeyedLock
from studio_reservations.db import models
from studio_reservations.db.models.booking import BookingStatus
from studio_reservations.db.models.credit_grant import GrantKind
from studio_reservations.db.session import Base
from studio_reservations.services import booking_service, class_registry, credit_ledger, waitlist_service


def test_two_members_racing_for_last_seat(tmp_path, clock, dispatcher):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    with SessionLocal() as db:
        members = [models.Member(email=f"racer{number}@example.com") for number in range(2)]
        db.add_all(members)
        db.commit()
        for member in members:
            credit_ledger.grant(db, member.id, 3, None, kind=GrantKind.package, now=clock.now())
        db.commit()
        studio_class = class_registry.create_class(
            db,
            name="Sold Out Spin",
            starts_at=clock.now() + timedelta(days=1),
            ends_at=clock.now() + timedelta(days=1, hours=1),
            capacity=1,
        )
        member_ids = [member.id for member in members]

    barrier = threading.Barrier(len(member_ids))
    outcomes = {}
    errors = []

    def attempt(member_id):
        with SessionLocal() as db:
            barrier.wait()
            try:
                outcomes[member_id] = booking_service.request_booking(
                    db,
                    class_id=studio_class.id,
                    member_id=member_id,
                    clock=clock,
                    dispatcher=dispatcher,
                )
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=attempt, args=(member_id,)) for member_id in member_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(outcome.waitlisted for outcome in outcomes.values()) == [False, True]
    with SessionLocal() as db:
        confirmed = db.execute(
            select(models.Booking).where(models.Booking.status == BookingStatus.confirmed)
        ).scalars().all()
        assert len(confirmed) == 1
        entries = waitlist_service.list_entries(db, studio_class.id)
        assert [entry.position for entry in entries] == [1]
        assert {confirmed[0].member_id, entries[0].member_id} == set(member_ids)
        balances = sorted(
            credit_ledger.balance(db, member_id, now=clock.now()).credits for member_id in member_ids
        )
        assert balances == [2, 3]
    engine.dispose()


def test_keyed_lock_forgets_released_keys():
    locks = KeyedLock()
    for class_id in range(100):
        with locks.hold(class_id):
            pass

    with locks.hold("class-1"):
        with locks.hold("class-1"):
            assert len(locks) == 1

    assert len(locks) == 0


def test_keyed_lock_serializes_holders_of_one_key():
    locks = KeyedLock()
    entered = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with locks.hold("class-1"):
            entered.set()
            release.wait(5)
            order.append("first")

    def second():
        entered.wait(5)
        with locks.hold("class-1"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    entered.wait(5)
    release.set()
    for thread in threads:
        thread.join()

    assert order == ["first", "second"]
    assert len(locks) == 0
