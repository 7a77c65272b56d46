from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.clock import ensure_aware
from ..core.errors import ErrorCode, StudioError
from ..db import models
from ..db.models.booking import BookingStatus
from ..db.models.studio_class import ClassStatus


class ClassRegistryError(StudioError):
    pass


@dataclass(frozen=True, slots=True)
class ClassSnapshot:
    id: int
    capacity: int
    starts_at: datetime
    ends_at: datetime
    status: ClassStatus
    credits_required: int

    def has_started(self, now: datetime) -> bool:
        return self.starts_at <= ensure_aware(now)


@dataclass(slots=True)
class ClassAvailability:
    studio_class: models.StudioClass
    booked_seats: int
    available_seats: int
    waitlist_size: int


def _snapshot(studio_class: models.StudioClass) -> ClassSnapshot:
    return ClassSnapshot(
        id=studio_class.id,
        capacity=studio_class.capacity,
        starts_at=ensure_aware(studio_class.starts_at),
        ends_at=ensure_aware(studio_class.ends_at),
        status=studio_class.status,
        credits_required=studio_class.credits_required,
    )


def get_class(db: Session, class_id: int) -> ClassSnapshot:
    studio_class = db.get(models.StudioClass, class_id)
    if studio_class is None:
        raise ClassRegistryError(ErrorCode.not_found, "Class not found")
    return _snapshot(studio_class)


def lock_class(db: Session, class_id: int) -> models.StudioClass:
    """Re-read the class row under ``FOR UPDATE`` inside the caller's transaction."""
    studio_class = db.execute(
        select(models.StudioClass)
        .where(models.StudioClass.id == class_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if studio_class is None:
        raise ClassRegistryError(ErrorCode.not_found, "Class not found")
    return studio_class


def confirmed_seat_count(db: Session, class_id: int) -> int:
    return db.scalar(
        select(func.count(models.Booking.id)).where(
            models.Booking.class_id == class_id,
            models.Booking.status == BookingStatus.confirmed,
        )
    ) or 0


def create_class(
    db: Session,
    *,
    name: str,
    starts_at: datetime,
    ends_at: datetime,
    capacity: int,
    credits_required: int = 1,
    instructor_name: str | None = None,
) -> models.StudioClass:
    if capacity <= 0:
        raise ValueError("capacity must be positive")
    if credits_required < 0:
        raise ValueError("credits_required must not be negative")
    if ensure_aware(ends_at) <= ensure_aware(starts_at):
        raise ValueError("ends_at must be after starts_at")
    studio_class = models.StudioClass(
        name=name,
        instructor_name=instructor_name,
        starts_at=ensure_aware(starts_at),
        ends_at=ensure_aware(ends_at),
        capacity=capacity,
        credits_required=credits_required,
        status=ClassStatus.scheduled,
    )
    db.add(studio_class)
    db.commit()
    db.refresh(studio_class)
    return studio_class


def list_classes(
    db: Session,
    *,
    from_dt: datetime | None = None,
    to_dt: datetime | None = None,
    include_cancelled: bool = False,
) -> list[ClassAvailability]:
    query = db.query(models.StudioClass)
    if from_dt:
        query = query.filter(models.StudioClass.starts_at >= from_dt)
    if to_dt:
        query = query.filter(models.StudioClass.starts_at <= to_dt)
    if not include_cancelled:
        query = query.filter(models.StudioClass.status != ClassStatus.cancelled)
    classes = query.order_by(models.StudioClass.starts_at).all()
    class_ids = [studio_class.id for studio_class in classes]
    if class_ids:
        booked_counts = dict(
            db.query(models.Booking.class_id, func.count(models.Booking.id))
            .filter(models.Booking.class_id.in_(class_ids))
            .filter(models.Booking.status == BookingStatus.confirmed)
            .group_by(models.Booking.class_id)
            .all()
        )
        waitlist_counts = dict(
            db.query(models.WaitlistEntry.class_id, func.count(models.WaitlistEntry.id))
            .filter(models.WaitlistEntry.class_id.in_(class_ids))
            .group_by(models.WaitlistEntry.class_id)
            .all()
        )
    else:
        booked_counts = {}
        waitlist_counts = {}
    result = []
    for studio_class in classes:
        booked = int(booked_counts.get(studio_class.id, 0))
        result.append(
            ClassAvailability(
                studio_class=studio_class,
                booked_seats=booked,
                available_seats=max(studio_class.capacity - booked, 0),
                waitlist_size=int(waitlist_counts.get(studio_class.id, 0)),
            )
        )
    return result


__all__ = [
    "ClassRegistryError",
    "ClassSnapshot",
    "ClassAvailability",
    "get_class",
    "lock_class",
    "confirmed_seat_count",
    "list_classes",
    "create_class",
]
