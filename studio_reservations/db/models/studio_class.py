from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class ClassStatus(str, PyEnum):
    scheduled = "scheduled"
    cancelled = "cancelled"
    completed = "completed"


class StudioClass(Base):
    __tablename__ = "classes"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_class_capacity_positive"),
        CheckConstraint("credits_required >= 0", name="ck_class_credits_required_non_negative"),
        CheckConstraint("ends_at > starts_at", name="ck_class_ends_after_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    instructor_name: Mapped[str | None] = mapped_column(String(255))
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_required: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[ClassStatus] = mapped_column(Enum(ClassStatus), default=ClassStatus.scheduled)
    cancellation_reason: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    bookings = relationship("Booking", back_populates="studio_class")
    waitlist_entries = relationship(
        "WaitlistEntry",
        back_populates="studio_class",
        order_by="WaitlistEntry.position",
    )
