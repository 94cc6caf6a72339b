# storefront/repos/buy_now_repo.py
from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.buy_now import BuyNowItemModel, BuyNowSessionModel


class BuyNowRepo:
    """Storage of buy-now sessions. Never touches cart tables."""

    def __init__(self, db: Session):
        self.db = db

    def add_session(self, session: BuyNowSessionModel) -> BuyNowSessionModel:
        self.db.add(session)
        self.db.flush()
        return session

    def get_session(self, token: str) -> BuyNowSessionModel | None:
        return self.db.execute(
            select(BuyNowSessionModel)
            .where(BuyNowSessionModel.token == token)
            .options(selectinload(BuyNowSessionModel.items))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def consume(self, token: str, now: datetime) -> int:
        # one-shot: only the first caller flips consumed_at
        result = self.db.execute(
            update(BuyNowSessionModel)
            .where(
                BuyNowSessionModel.token == token,
                BuyNowSessionModel.consumed_at.is_(None),
                BuyNowSessionModel.expires_at > now,
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge(self, now: datetime) -> int:
        stale = select(BuyNowSessionModel.token).where(
            or_(
                BuyNowSessionModel.expires_at <= now,
                BuyNowSessionModel.consumed_at.is_not(None),
            )
        )
        tokens = list(self.db.execute(stale).scalars())
        if not tokens:
            return 0

        self.db.execute(
            delete(BuyNowItemModel)
            .where(BuyNowItemModel.token.in_(tokens))
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            delete(BuyNowSessionModel)
            .where(BuyNowSessionModel.token.in_(tokens))
            .execution_options(synchronize_session=False)
        )
        return len(tokens)
