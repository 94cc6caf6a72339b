from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

from sqlalchemy.orm import Session

from storefront.data.database import reading
from storefront.data.models.product import ProductModel
from storefront.domain.errors import InvalidInput, NotFound
from storefront.repos.product_repo import ProductRepo

CENT = Decimal("0.01")


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    """Money is rounded once, per line. Sums of line totals are never re-rounded."""
    return (Decimal(unit_price) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


class CatalogService:
    """
    Read-only view of the catalog.

    Stock returned from here is advisory: it can move before the caller uses
    it, checkout re-reads it inside its own transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProductRepo(db)

    def get_product(self, product_id: int) -> ProductModel:
        with reading(self.db):
            product = self.repo.get_product(product_id)
        if not product:
            raise NotFound(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND", product_id=product_id)
        return product

    def get_active_product(self, product_id: int, fresh: bool = False) -> ProductModel:
        with reading(self.db):
            product = self.repo.get_fresh(product_id) if fresh else self.repo.get_product(product_id)
        if not product:
            raise NotFound(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND", product_id=product_id)
        if not product.is_active:
            raise InvalidInput(
                f'Product "{product.name}" is not available',
                code="PRODUCT_UNAVAILABLE",
                product_id=product_id,
            )
        return product

    def fresh(self, product_id: int) -> ProductModel | None:
        with reading(self.db):
            return self.repo.get_fresh(product_id)

    @staticmethod
    def effective_price(product: ProductModel) -> Decimal:
        return product.effective_price

    @staticmethod
    def available_stock(product: ProductModel) -> int | None:
        # None means the product does not track stock
        if not product.manage_stock:
            return None
        return max(0, product.stock_quantity)

    def describe(self, product_id: int) -> Dict[str, Any]:
        product = self.get_product(product_id)
        return {
            "id": product.id,
            "name": product.name,
            "slug": product.slug,
            "sku": product.sku,
            "price": product.price,
            "sale_price": product.sale_price,
            "effective_price": self.effective_price(product),
            "stock_quantity": product.stock_quantity,
            "manage_stock": product.manage_stock,
            "status": product.status,
        }
