"""Read-only pricing lookups over the class and product catalog."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import get_settings
from ..core.errors import ErrorCode, StudioError
from ..db import models
from ..db.models.product import ProductKind


class CatalogError(StudioError):
    pass


@dataclass(frozen=True, slots=True)
class CreditTerms:
    product_id: int
    kind: ProductKind
    name: str
    price: Decimal
    credits_total: int | None
    expiration_days: int | None

    def expires_at(self, now: datetime) -> datetime | None:
        if self.expiration_days is None:
            return None
        return now + timedelta(days=self.expiration_days)


class PricingCatalog(Protocol):
    def get_class_price(self, class_id: int) -> int | None: ...

    def get_product_credit_terms(self, product_id: int) -> CreditTerms: ...


class DatabaseCatalog:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_class_price(self, class_id: int) -> int | None:
        """Credits a class costs, or ``None`` when it is free."""
        studio_class = self.db.get(models.StudioClass, class_id)
        if studio_class is None:
            raise CatalogError(ErrorCode.not_found, "Class not found")
        return studio_class.credits_required or None

    def get_product_credit_terms(self, product_id: int) -> CreditTerms:
        product = self.db.get(models.Product, product_id)
        if product is None:
            raise CatalogError(ErrorCode.not_found, "Product not found")
        return terms_for_product(product)


def terms_for_product(product: models.Product) -> CreditTerms:
    expiration_days = product.expiration_days
    if product.kind == ProductKind.membership and not expiration_days:
        expiration_days = get_settings().membership_period_days
    return CreditTerms(
        product_id=product.id,
        kind=product.kind,
        name=product.name,
        price=Decimal(str(product.price)),
        # Memberships without a credit count are unlimited
        credits_total=product.credits or None,
        expiration_days=expiration_days or None,
    )


def find_product_by_link(db: Session, link_id: str | None) -> models.Product | None:
    if not link_id:
        return None
    return db.execute(
        select(models.Product).where(models.Product.payment_link_id == link_id)
    ).scalar_one_or_none()


def find_product_by_price(db: Session, amount: Decimal | None) -> models.Product | None:
    """Exact-price fallback; packages win over memberships at the same price."""
    if amount is None:
        return None
    candidates = (
        db.execute(
            select(models.Product)
            .where(models.Product.price == amount)
            .order_by(models.Product.id)
        )
        .scalars()
        .all()
    )
    for kind in (ProductKind.package, ProductKind.membership):
        for product in candidates:
            if product.kind == kind:
                return product
    return None


__all__ = [
    "CatalogError",
    "CreditTerms",
    "PricingCatalog",
    "DatabaseCatalog",
    "terms_for_product",
    "find_product_by_link",
    "find_product_by_price",
]
