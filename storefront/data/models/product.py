# storefront/data/models/product.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ProductModel(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    sku = Column(String(100), nullable=True)

    price = Column(Numeric(12, 2), nullable=False)
    sale_price = Column(Numeric(12, 2), nullable=True)

    stock_quantity = Column(Integer, nullable=False, default=0)
    manage_stock = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="active")  # active, inactive, draft

    # bumped on every stock write, compare-and-swap at checkout
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def effective_price(self) -> Decimal:
        if self.sale_price is not None and self.sale_price > 0:
            return Decimal(self.sale_price)
        return Decimal(self.price)
