# storefront/repos/order_repo.py
from typing import List

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderItemModel, OrderModel, OrderStatusHistoryModel
from storefront.domain.owner import Owner
from storefront.repos.common import owner_clause


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def add_order_items(self, items: List[OrderItemModel]) -> None:
        self.db.add_all(items)
        self.db.flush()

    def add_history(self, order_id: int, status: str, comment: str | None = None) -> None:
        self.db.add(OrderStatusHistoryModel(order_id=order_id, status=status, comment=comment))
        self.db.flush()

    def order_number_exists(self, order_number: str) -> bool:
        return self.db.execute(
            select(OrderModel.id).where(OrderModel.order_number == order_number)
        ).first() is not None

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_for_owner(self, owner: Owner, identifier: str) -> OrderModel | None:
        # identifier is either the numeric id or the order number
        conditions = [OrderModel.order_number == identifier]
        if identifier.isdigit():
            conditions.append(OrderModel.id == int(identifier))
        return self.db.execute(
            select(OrderModel).where(or_(*conditions), owner_clause(OrderModel, owner))
        ).scalars().first()

    @staticmethod
    def _filtered(stmt, owner: Owner, status: str | None, payment_status: str | None):
        stmt = stmt.where(owner_clause(OrderModel, owner))
        if status:
            stmt = stmt.where(OrderModel.status == status)
        if payment_status:
            stmt = stmt.where(OrderModel.payment_status == payment_status)
        return stmt

    def list_for_owner(
        self,
        owner: Owner,
        offset: int,
        limit: int,
        status: str | None = None,
        payment_status: str | None = None,
    ) -> List[OrderModel]:
        stmt = self._filtered(select(OrderModel), owner, status, payment_status)
        stmt = stmt.order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        return list(self.db.execute(stmt.offset(offset).limit(limit)).scalars())

    def count_for_owner(
        self,
        owner: Owner,
        status: str | None = None,
        payment_status: str | None = None,
    ) -> int:
        stmt = self._filtered(select(func.count(OrderModel.id)), owner, status, payment_status)
        return int(self.db.execute(stmt).scalar_one())

    def update_status(self, order_id: int, old_status: str, values: dict) -> int:
        # guarded on the status we validated against, a concurrent transition loses
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == old_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def history(self, order_id: int) -> List[OrderStatusHistoryModel]:
        return list(
            self.db.execute(
                select(OrderStatusHistoryModel)
                .where(OrderStatusHistoryModel.order_id == order_id)
                .order_by(OrderStatusHistoryModel.id)
            ).scalars()
        )

    def update_payment_status(self, order_id: int, payment_status: str) -> int:
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(payment_status=payment_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
