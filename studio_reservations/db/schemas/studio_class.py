from datetime import datetime
from pydantic import BaseModel, Field


class StudioClassBase(BaseModel):
    name: str
    instructor_name: str | None = None
    starts_at: datetime
    ends_at: datetime
    capacity: int = Field(gt=0)
    credits_required: int = Field(default=1, ge=0)


class StudioClassCreate(StudioClassBase):
    pass


class StudioClass(StudioClassBase):
    id: int
    status: str
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


class StudioClassAvailability(StudioClass):
    booked_seats: int
    available_seats: int
    waitlist_size: int


class ClassCancel(BaseModel):
    reason: str | None = None


class ClassCancellationResult(BaseModel):
    class_id: int
    cancelled_bookings: int
    removed_waitlist_entries: int
    credits_refunded: int


class AttendanceBulk(BaseModel):
    attended: list[int] = Field(default_factory=list)
    no_show: list[int] = Field(default_factory=list)
