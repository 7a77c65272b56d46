from datetime import datetime
from pydantic import BaseModel


class WaitlistJoin(BaseModel):
    class_id: int


class WaitlistEntry(BaseModel):
    id: int
    class_id: int
    member_id: int
    position: int
    notified: bool
    joined_at: datetime

    class Config:
        from_attributes = True


class PromotionResult(BaseModel):
    promoted_booking_ids: list[int]
    skipped_member_ids: list[int]
