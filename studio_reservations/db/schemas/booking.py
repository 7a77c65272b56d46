from datetime import datetime
from pydantic import BaseModel

from .waitlist import WaitlistEntry


class BookingCreate(BaseModel):
    class_id: int


class AdminBookingCreate(BookingCreate):
    member_id: int


class BookingAttendance(BaseModel):
    status: str


class Booking(BaseModel):
    id: int
    class_id: int
    member_id: int
    status: str
    source: str
    credits_used: int
    booked_at: datetime
    cancelled_at: datetime | None = None
    cancellation_type: str | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


class BookingOutcome(BaseModel):
    status: str
    booking: Booking | None = None
    waitlist_entry: WaitlistEntry | None = None


class BookingCancellation(BaseModel):
    booking: Booking
    classification: str
    refund: bool
    credits_refunded: int
    hours_until_class: float
    promoted_booking_ids: list[int]


class ClassRegistrations(BaseModel):
    class_id: int
    bookings: list[Booking]
    waitlist: list[WaitlistEntry]
