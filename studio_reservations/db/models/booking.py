from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class BookingStatus(str, PyEnum):
    confirmed = "confirmed"
    cancelled_on_time = "cancelled_on_time"
    cancelled_late = "cancelled_late"
    no_show = "no_show"
    attended = "attended"


class BookingSource(str, PyEnum):
    member = "member"
    admin = "admin"
    waitlist = "waitlist"


class CancellationType(str, PyEnum):
    on_time = "on_time"
    late = "late"
    no_show = "no_show"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_booking_confirmed_member_class",
            "class_id",
            "member_id",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), index=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), index=True)
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), default=BookingStatus.confirmed)
    source: Mapped[BookingSource] = mapped_column(Enum(BookingSource), default=BookingSource.member)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_type: Mapped[CancellationType | None] = mapped_column(Enum(CancellationType))
    cancelled_by: Mapped[str | None] = mapped_column(String(64))
    cancellation_reason: Mapped[str | None] = mapped_column(String(255))

    member = relationship("Member")
    studio_class = relationship("StudioClass", back_populates="bookings")
