# storefront/services/cart_service.py
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from storefront.data.database import atomic, reading
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import Conflict, DuplicateCartRow, InsufficientStock, InvalidInput, NotFound
from storefront.domain.owner import Owner
from storefront.repos.cart_repo import CartRepo
from storefront.services.catalog_service import CatalogService, line_total
from storefront.services.lock_service import LockService
from storefront.utils.retry import duplicate_row_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def cart_view(rows: List[Tuple[CartItemModel, ProductModel]]) -> Dict[str, Any]:
    items = []
    subtotal = Decimal("0.00")
    item_count = 0

    for item, product in rows:
        unit_price = product.effective_price
        total = line_total(unit_price, item.quantity)
        subtotal += total
        item_count += item.quantity
        items.append(
            {
                "id": item.id,
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "quantity": item.quantity,
                "unit_price": unit_price,
                "line_total": total,
                "stock_quantity": product.stock_quantity,
                "created_at": item.created_at,
            }
        )

    return {"items": items, "summary": {"item_count": item_count, "subtotal": subtotal}}


class CartService:
    """
    Persistent cart of one owner (anonymous session or account).

    commands (add, update, remove, clear) run under the owner lock, each in a
    single transaction; queries (list, count) only read.

    Stock is soft at this stage: quantities are clamped to what is on hand,
    the hard check happens at checkout.
    """

    def __init__(self, db: Session, lock_service: LockService):
        self.db = db
        self.repo = CartRepo(db)
        self.catalog = CatalogService(db)
        self.lock_service = lock_service

    # query
    def list(self, owner: Owner) -> Dict[str, Any]:
        with reading(self.db):
            return cart_view(self.repo.list_visible(owner))

    def count(self, owner: Owner) -> int:
        with reading(self.db):
            return self.repo.count_visible(owner)

    # commands
    def add_item(self, owner: Owner, product_id: int, quantity: int) -> Dict[str, Any]:
        if quantity is None or quantity < 1:
            raise InvalidInput("Quantity must be at least 1", code="INVALID_QUANTITY")

        product = self.catalog.get_active_product(product_id)
        cap = self.catalog.available_stock(product)
        if cap == 0:
            raise InsufficientStock(product.id, product.name, quantity, 0)

        with self.lock_service.hold(owner):
            try:
                return self._add_once(owner, product, quantity, cap)
            except DuplicateCartRow:
                raise Conflict(
                    f"Concurrent update of product {product_id} in cart, try again",
                    product_id=product_id,
                )

    @duplicate_row_retry()
    def _add_once(
        self,
        owner: Owner,
        product: ProductModel,
        quantity: int,
        cap: int | None,
    ) -> Dict[str, Any]:
        with atomic(self.db):
            existing = self.repo.get_by_product(owner, product.id)

            if existing:
                previous = existing.quantity
                cart_item_id = existing.id
                self.repo.increment(cart_item_id, quantity, cap)
                action = "updated"
            else:
                previous = 0
                first = quantity if cap is None else min(quantity, cap)
                cart_item_id = self.repo.insert_item(owner, product.id, first).id
                action = "added"

        wanted = previous + quantity
        final = wanted if cap is None else min(wanted, cap)
        clamped = final < wanted

        if clamped:
            logger.warning(
                f"Product {product.id} clamped to stock {cap} for {owner.lock_key} "
                f"(wanted {wanted})"
            )
        else:
            logger.info(f"Product {product.id} {action} in cart {owner.lock_key}, quantity {final}")

        return {
            "cart_item_id": cart_item_id,
            "product_id": product.id,
            "quantity": final,
            "requested_quantity": wanted,
            "clamped": clamped,
            "action": action,
        }

    def update_quantity(self, owner: Owner, cart_item_id: int, quantity: int) -> Dict[str, Any]:
        if quantity is None or quantity < 0:
            raise InvalidInput("Quantity must not be negative", code="INVALID_QUANTITY")

        if quantity == 0:
            return self.remove_item(owner, cart_item_id)

        with self.lock_service.hold(owner):
            with atomic(self.db):
                item = self.repo.get_cart_item(owner, cart_item_id)
                if not item:
                    raise NotFound(
                        "Cart item not found",
                        code="CART_ITEM_NOT_FOUND",
                        cart_item_id=cart_item_id,
                    )

                product = self.catalog.get_active_product(item.product_id)
                cap = self.catalog.available_stock(product)
                if cap == 0:
                    raise InsufficientStock(product.id, product.name, quantity, 0)

                final = quantity if cap is None else min(quantity, cap)
                self.repo.set_quantity(item.id, final)
                product_id = product.id

        logger.info(f"Cart item {cart_item_id} of {owner.lock_key} set to {final}")
        return {
            "cart_item_id": cart_item_id,
            "product_id": product_id,
            "quantity": final,
            "requested_quantity": quantity,
            "clamped": final < quantity,
            "action": "updated",
        }

    def remove_item(self, owner: Owner, cart_item_id: int) -> Dict[str, Any]:
        with self.lock_service.hold(owner):
            with atomic(self.db):
                removed = self.repo.delete_cart_item(owner, cart_item_id)

        # removing what is not there is fine
        logger.info(f"Cart item {cart_item_id} removed from {owner.lock_key}: {bool(removed)}")
        return {"cart_item_id": cart_item_id, "removed": bool(removed), "action": "removed"}

    def clear(self, owner: Owner) -> int:
        with self.lock_service.hold(owner):
            with atomic(self.db):
                removed = self.repo.clear(owner)

        logger.info(f"Cleared {removed} item(s) from {owner.lock_key}")
        return removed
