from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import (
    CHAR,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class PaymentMethod(str, PyEnum):
    swipesimple = "swipesimple"
    admin = "admin"
    manual = "manual"
    renewal = "renewal"


class Payment(Base):
    """Completed monetary transaction. Rows are never updated."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("external_transaction_id", name="uq_payment_external_transaction_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), index=True)
    amount: Mapped[float] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(CHAR(3), default="USD")
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod))
    external_transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    pending_purchase_id: Mapped[int | None] = mapped_column(ForeignKey("pending_purchases.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    member = relationship("Member")
    grants = relationship("CreditGrant", back_populates="payment")
