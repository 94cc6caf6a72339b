# storefront/data/models/cart_item.py
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, UniqueConstraint

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CartItemModel(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        # exactly one owner column is set
        CheckConstraint(
            "(session_id IS NULL) <> (user_id IS NULL)",
            name="ck_cart_items_single_owner",
        ),
        CheckConstraint("quantity > 0", name="ck_cart_items_quantity_positive"),
        UniqueConstraint("session_id", "product_id", name="u_cart_session_product"),
        UniqueConstraint("user_id", "product_id", name="u_cart_user_product"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(String(128), nullable=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)

    # no FK: a deleted product just stops showing up in the cart
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
