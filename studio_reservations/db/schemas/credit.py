from datetime import datetime
from pydantic import BaseModel, Field


class CreditGrant(BaseModel):
    id: int
    member_id: int
    kind: str
    product_id: int | None = None
    payment_id: int | None = None
    credits_total: int | None = None
    credits_remaining: int | None = None
    purchased_at: datetime
    expires_at: datetime | None = None
    is_active: bool
    auto_renew: bool = False
    renewed_by_grant_id: int | None = None

    class Config:
        from_attributes = True


class CreditBalance(BaseModel):
    member_id: int
    credits: int
    unlimited: bool
    grants: list[CreditGrant]


class ManualGrantCreate(BaseModel):
    member_ids: list[int] = Field(min_length=1)
    credits: int = Field(gt=0)
    expiration_days: int | None = Field(default=None, gt=0)
    product_id: int | None = None
    notes: str | None = None


class ExpireSweepResult(BaseModel):
    expired: int
    grant_ids: list[int]


class AutoRenewUpdate(BaseModel):
    auto_renew: bool


class RenewalItem(BaseModel):
    grant_id: int
    member_id: int
    status: str
    renewal_grant_id: int | None = None
    payment_id: int | None = None
    error: str | None = None


class RenewalSweepResult(BaseModel):
    total_processed: int
    renewed: int
    failed: int
    renewals: list[RenewalItem]
