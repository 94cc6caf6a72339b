# storefront/repos/cart_repo.py
from typing import Iterable, List, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import DuplicateCartRow
from storefront.domain.owner import Account, Owner
from storefront.repos.common import owner_clause


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def list_visible(self, owner: Owner) -> List[Tuple[CartItemModel, ProductModel]]:
        # inactive or deleted products drop out of the join, the row itself stays
        rows = self.db.execute(
            select(CartItemModel, ProductModel)
            .join(ProductModel, ProductModel.id == CartItemModel.product_id)
            .where(owner_clause(CartItemModel, owner), ProductModel.status == "active")
            .order_by(CartItemModel.created_at.desc(), CartItemModel.id.desc())
        ).all()
        return [(item, product) for item, product in rows]

    def list_all(self, owner: Owner) -> List[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(owner_clause(CartItemModel, owner))
                .order_by(CartItemModel.id)
            ).scalars()
        )

    def count_visible(self, owner: Owner) -> int:
        total = self.db.execute(
            select(func.coalesce(func.sum(CartItemModel.quantity), 0))
            .join(ProductModel, ProductModel.id == CartItemModel.product_id)
            .where(owner_clause(CartItemModel, owner), ProductModel.status == "active")
        ).scalar_one()
        return int(total)

    def get_cart_item(self, owner: Owner, cart_item_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel).where(
                CartItemModel.id == cart_item_id,
                owner_clause(CartItemModel, owner),
            )
        ).scalar_one_or_none()

    def get_by_product(self, owner: Owner, product_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel)
            .where(
                CartItemModel.product_id == product_id,
                owner_clause(CartItemModel, owner),
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def insert_item(self, owner: Owner, product_id: int, quantity: int) -> CartItemModel:
        item = CartItemModel(product_id=product_id, quantity=quantity, **owner.columns())
        self.db.add(item)
        try:
            self.db.flush()
        except IntegrityError as e:
            # somebody inserted the same (owner, product) pair first
            raise DuplicateCartRow(product_id) from e
        return item

    def increment(self, cart_item_id: int, delta: int, cap: int | None = None) -> None:
        new_quantity = CartItemModel.quantity + delta
        if cap is not None:
            new_quantity = case((new_quantity > cap, cap), else_=new_quantity)
        self.db.execute(
            update(CartItemModel)
            .where(CartItemModel.id == cart_item_id)
            .values(quantity=new_quantity)
            .execution_options(synchronize_session=False)
        )

    def set_quantity(self, cart_item_id: int, quantity: int) -> None:
        self.db.execute(
            update(CartItemModel)
            .where(CartItemModel.id == cart_item_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )

    def rekey(self, cart_item_id: int, account: Account) -> None:
        self.db.execute(
            update(CartItemModel)
            .where(CartItemModel.id == cart_item_id)
            .values(**account.columns())
            .execution_options(synchronize_session=False)
        )

    def delete_cart_item(self, owner: Owner, cart_item_id: int) -> int:
        result = self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.id == cart_item_id, owner_clause(CartItemModel, owner))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_items(self, owner: Owner, cart_item_ids: Iterable[int]) -> int:
        ids = list(cart_item_ids)
        if not ids:
            return 0
        result = self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.id.in_(ids), owner_clause(CartItemModel, owner))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def clear(self, owner: Owner) -> int:
        result = self.db.execute(
            delete(CartItemModel)
            .where(owner_clause(CartItemModel, owner))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
