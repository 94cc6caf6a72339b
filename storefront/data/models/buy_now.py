# storefront/data/models/buy_now.py
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # sqlite hands timezone-aware columns back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BuyNowSessionModel(Base):
    __tablename__ = "buy_now_sessions"
    __table_args__ = (
        CheckConstraint(
            "(session_id IS NULL) <> (user_id IS NULL)",
            name="ck_buy_now_single_owner",
        ),
    )

    token = Column(String(64), primary_key=True)
    session_id = Column(String(128), nullable=True)
    user_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    consumed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "BuyNowItemModel",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="BuyNowItemModel.id",
    )

    def is_live(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        return self.consumed_at is None and as_utc(self.expires_at) > now


class BuyNowItemModel(Base):
    __tablename__ = "buy_now_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_buy_now_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    token = Column(
        String(64),
        ForeignKey("buy_now_sessions.token", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    session = relationship("BuyNowSessionModel", back_populates="items")
