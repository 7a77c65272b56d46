from datetime import datetime
from decimal import Decimal
from typing import Any
from pydantic import BaseModel


class PendingPurchaseCreate(BaseModel):
    product_id: int
    notes: str | None = None


class PendingPurchaseConfirm(BaseModel):
    external_transaction_id: str | None = None


class PendingPurchaseCancel(BaseModel):
    reason: str | None = None


class PendingPurchase(BaseModel):
    id: int
    member_id: int
    product_id: int
    product_name: str
    product_kind: str
    amount: Decimal
    status: str
    notes: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None
    resolved_by: str | None = None

    class Config:
        from_attributes = True


class Payment(BaseModel):
    id: int
    member_id: int
    amount: Decimal
    currency: str
    method: str
    external_transaction_id: str
    pending_purchase_id: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class PurchaseRecord(BaseModel):
    payment_id: int
    grant_id: int
    member_id: int
    credits_total: int | None = None
    expires_at: datetime | None = None


class UnresolvedPayment(BaseModel):
    id: int
    reason: str
    status: str
    email: str | None = None
    link_id: str | None = None
    amount: Decimal | None = None
    external_transaction_id: str | None = None
    payload: dict[str, Any] | None = None
    payment_id: int | None = None
    created_at: datetime
    resolved_at: datetime | None = None

    class Config:
        from_attributes = True


class UnresolvedPaymentResolve(BaseModel):
    member_id: int
    product_id: int


class WebhookAck(BaseModel):
    received: bool = True
    status: str
    message: str
    code: str | None = None
    payment_id: int | None = None
    grant_id: int | None = None
    unresolved_payment_id: int | None = None
