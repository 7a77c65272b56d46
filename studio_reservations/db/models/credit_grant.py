from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ..session import Base


class GrantKind(str, PyEnum):
    package = "package"
    membership = "membership"
    manual = "manual"
    compensation = "compensation"


class CreditGrant(Base):
    __tablename__ = "credit_grants"
    __table_args__ = (
        CheckConstraint(
            "credits_remaining IS NULL OR "
            "(credits_remaining >= 0 AND credits_remaining <= credits_total)",
            name="ck_credit_grant_remaining_bounds",
        ),
        CheckConstraint(
            "(credits_total IS NULL) = (credits_remaining IS NULL)",
            name="ck_credit_grant_unlimited_consistent",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), index=True)
    kind: Mapped[GrantKind] = mapped_column(Enum(GrantKind), nullable=False)
    product_id: Mapped[int | None] = mapped_column(ForeignKey("products.id"))
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id"))
    credits_total: Mapped[int | None] = mapped_column(Integer)
    credits_remaining: Mapped[int | None] = mapped_column(Integer)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False
    )
    renewed_by_grant_id: Mapped[int | None] = mapped_column(ForeignKey("credit_grants.id"))
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    member = relationship("Member")
    product = relationship("Product")
    payment = relationship("Payment", back_populates="grants")

    @property
    def is_unlimited(self) -> bool:
        return self.credits_total is None
