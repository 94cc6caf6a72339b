# storefront/repos/product_repo.py
from typing import Iterable, List

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_fresh(self, product_id: int) -> ProductModel | None:
        # bypass the identity map, stock may have moved since the last read
        return self.db.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_products(self, product_ids: Iterable[int]) -> List[ProductModel]:
        ids = list(product_ids)
        if not ids:
            return []
        return list(
            self.db.execute(select(ProductModel).where(ProductModel.id.in_(ids))).scalars()
        )

    def decrement_stock(self, product_id: int, old_version: int, quantity: int) -> int:
        # UPDATE products SET stock = stock - q, version = v + 1 WHERE id = ? AND version = v
        result = self.db.execute(
            update(ProductModel)
            .where(
                ProductModel.id == product_id,
                ProductModel.version == old_version,
                ProductModel.stock_quantity >= quantity,
            )
            .values(
                stock_quantity=ProductModel.stock_quantity - quantity,
                version=ProductModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def restock(self, product_id: int, quantity: int) -> int:
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.manage_stock.is_(True))
            .values(
                stock_quantity=ProductModel.stock_quantity + quantity,
                version=ProductModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
