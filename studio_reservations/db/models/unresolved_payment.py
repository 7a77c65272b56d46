from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column
from ..session import Base


class UnresolvedReason(str, PyEnum):
    missing_email = "missing_email"
    member_not_found = "member_not_found"
    product_not_identified = "product_not_identified"


class UnresolvedStatus(str, PyEnum):
    open = "open"
    resolved = "resolved"
    dismissed = "dismissed"


class UnresolvedPayment(Base):
    """Webhook event kept for manual reconciliation."""

    __tablename__ = "unresolved_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reason: Mapped[UnresolvedReason] = mapped_column(Enum(UnresolvedReason))
    status: Mapped[UnresolvedStatus] = mapped_column(Enum(UnresolvedStatus), default=UnresolvedStatus.open)
    email: Mapped[str | None] = mapped_column(String(255))
    link_id: Mapped[str | None] = mapped_column(String(128))
    amount: Mapped[float | None] = mapped_column(Numeric(10, 2))
    external_transaction_id: Mapped[str | None] = mapped_column(String(128), index=True)
    payload: Mapped[dict | None] = mapped_column(JSON)
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
