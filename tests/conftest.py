import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("CRON_SECRET", "cron-secret")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from studio_reservations.core.clock import FixedClock
from studio_reservations.db import models
from studio_reservations.db.models.credit_grant import GrantKind
from studio_reservations.db.models.product import ProductKind
from studio_reservations.db.session import Base
from studio_reservations.services import class_registry, credit_ledger

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent = []

    def notify(self, member_id, event_type, payload) -> None:
        self.sent.append((member_id, event_type, payload))

    def events(self, event_type=None):
        return [item for item in self.sent if event_type is None or item[1] == event_type]


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    TestingSessionLocal = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
    )
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def clock():
    return FixedClock(NOW)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def make_member(db_session):
    ids = count(1)

    def factory(email: str | None = None, full_name: str | None = None) -> models.Member:
        number = next(ids)
        member = models.Member(
            email=email or f"member{number}@example.com",
            full_name=full_name or f"Member {number}",
        )
        db_session.add(member)
        db_session.commit()
        db_session.refresh(member)
        return member

    return factory


@pytest.fixture()
def make_class(db_session, clock):
    def factory(
        *,
        starts_in: timedelta = timedelta(days=3),
        capacity: int = 1,
        credits_required: int = 1,
        duration: timedelta = timedelta(hours=1),
        name: str = "Reformer Pilates",
    ) -> models.StudioClass:
        starts_at = clock.now() + starts_in
        return class_registry.create_class(
            db_session,
            name=name,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            capacity=capacity,
            credits_required=credits_required,
        )

    return factory


@pytest.fixture()
def give_credits(db_session, clock):
    def factory(
        member: models.Member,
        credits: int | None = 10,
        *,
        expires_in: timedelta | None = timedelta(days=90),
        kind: GrantKind = GrantKind.package,
    ) -> models.CreditGrant:
        now = clock.now()
        grant = credit_ledger.grant(
            db_session,
            member.id,
            credits,
            now + expires_in if expires_in is not None else None,
            kind=kind,
            now=now,
        )
        db_session.commit()
        return grant

    return factory


@pytest.fixture()
def make_product(db_session):
    def factory(
        *,
        name: str = "10 Class Pack",
        kind: ProductKind = ProductKind.package,
        price: str = "180.00",
        credits: int | None = 10,
        expiration_days: int | None = 90,
        payment_link_id: str | None = None,
    ) -> models.Product:
        product = models.Product(
            name=name,
            kind=kind,
            price=Decimal(price),
            credits=credits,
            expiration_days=expiration_days,
            payment_link_id=payment_link_id,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return factory
