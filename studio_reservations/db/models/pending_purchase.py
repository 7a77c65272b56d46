from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base
from .product import ProductKind


class PendingPurchaseStatus(str, PyEnum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"


class PendingPurchase(Base):
    __tablename__ = "pending_purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    product_name: Mapped[str] = mapped_column(String(128))
    product_kind: Mapped[ProductKind] = mapped_column(Enum(ProductKind))
    amount: Mapped[float] = mapped_column(Numeric(10, 2))
    status: Mapped[PendingPurchaseStatus] = mapped_column(
        Enum(PendingPurchaseStatus), default=PendingPurchaseStatus.pending
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolved_by: Mapped[str | None] = mapped_column(String(64))

    member = relationship("Member")
    product = relationship("Product")
