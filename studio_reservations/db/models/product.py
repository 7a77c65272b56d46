from enum import Enum as PyEnum
from sqlalchemy import Boolean, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from ..session import Base


class ProductKind(str, PyEnum):
    package = "package"
    membership = "membership"


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[ProductKind] = mapped_column(Enum(ProductKind), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    credits: Mapped[int | None] = mapped_column(Integer)
    expiration_days: Mapped[int | None] = mapped_column(Integer)
    payment_link_id: Mapped[str | None] = mapped_column(String(128), unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
