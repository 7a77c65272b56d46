from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from studio_reservations.db import models
from studio_reservations.db.models.credit_grant import GrantKind
from studio_reservations.db.models.product import ProductKind
from studio_reservations.db.models.studio_class import ClassStatus
from studio_reservations.db.session import Base
from studio_reservations.services import class_registry, credit_ledger
from studio_reservations.workers import scheduler


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


def test_expire_credits_job(session_factory, clock):
    with session_factory() as db:
        member = models.Member(email="sweep@example.com")
        db.add(member)
        db.commit()
        credit_ledger.grant(
            db, member.id, 4, clock.now() + timedelta(days=1), kind=GrantKind.package, now=clock.now()
        )
        db.commit()

    assert scheduler.expire_credits(session_factory, clock) == 0
    clock.advance(timedelta(days=2))
    assert scheduler.expire_credits(session_factory, clock) == 1
    assert scheduler.expire_credits(session_factory, clock) == 0


def test_complete_classes_job(session_factory, clock):
    with session_factory() as db:
        studio_class = class_registry.create_class(
            db,
            name="Early Stretch",
            starts_at=clock.now() + timedelta(hours=1),
            ends_at=clock.now() + timedelta(hours=2),
            capacity=4,
        )
    clock.advance(timedelta(hours=3))

    assert scheduler.complete_classes(session_factory, clock) == 1
    with session_factory() as db:
        assert db.get(models.StudioClass, studio_class.id).status == ClassStatus.completed


def test_renew_memberships_job(session_factory, clock):
    with session_factory() as db:
        member = models.Member(email="renew@example.com")
        product = models.Product(
            name="Unlimited Monthly",
            kind=ProductKind.membership,
            price=Decimal("149.00"),
            credits=None,
            expiration_days=30,
        )
        db.add_all([member, product])
        db.commit()
        grant = credit_ledger.grant(
            db,
            member.id,
            None,
            clock.now() + timedelta(hours=12),
            kind=GrantKind.membership,
            now=clock.now(),
            product_id=product.id,
        )
        grant.auto_renew = True
        db.commit()

    assert scheduler.renew_memberships(session_factory, clock) == 1
    assert scheduler.renew_memberships(session_factory, clock) == 0


def test_scheduler_registers_every_job():
    jobs = scheduler.get_scheduler().get_jobs()
    assert sorted(job.func.__name__ for job in jobs) == [
        "complete_classes",
        "expire_credits",
        "renew_memberships",
    ]
