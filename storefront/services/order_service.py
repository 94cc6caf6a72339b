# storefront/services/order_service.py
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Tuple, Union

from sqlalchemy.orm import Session

from storefront.data.database import atomic, reading
from storefront.data.models.order import OrderItemModel, OrderModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import (
    Conflict,
    InsufficientStock,
    InvalidInput,
    InvalidTransition,
    NotFound,
    StaleStockVersion,
)
from storefront.domain.order_status import (
    CUSTOMER_CANCELLABLE,
    OrderStatus,
    PaymentStatus,
    ensure_transition,
    payment_history_status,
)
from storefront.domain.owner import Owner, owner_from_columns
from storefront.domain.schemas import CustomerIn
from storefront.repos.cart_repo import CartRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.buy_now_service import BuyNowService
from storefront.services.catalog_service import CatalogService, line_total
from storefront.services.lock_service import LockService
from storefront.utils.retry import stock_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartSource:
    owner: Owner


@dataclass(frozen=True)
class BuyNowSource:
    token: str
    # when given, the session must belong to this owner
    owner: Owner | None = None


CheckoutSource = Union[CartSource, BuyNowSource]


def generate_order_number() -> str:
    today = datetime.now(timezone.utc).strftime("%y%m%d")
    return f"HD{today}{uuid.uuid4().hex[:8].upper()}"


def order_view(order: OrderModel, with_history: bool = False) -> Dict[str, Any]:
    view = {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "source": order.source,
        "user_id": order.user_id,
        "total_amount": order.total_amount,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "customer_phone": order.customer_phone,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "payment_method": order.payment_method,
        "notes": order.notes,
        "tracking_number": order.tracking_number,
        "created_at": order.created_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
        "items": [
            {
                "product_id": item.product_id,
                "product_name": item.product_name,
                "product_sku": item.product_sku,
                "unit_price": item.unit_price,
                "quantity": item.quantity,
                "total_price": item.total_price,
            }
            for item in order.items
        ],
    }
    if with_history:
        view["history"] = [
            {"status": h.status, "comment": h.comment, "created_at": h.created_at}
            for h in order.history
        ]
    return view


class OrderService:
    """
    Turns a cart or a buy-now session into an order.

    Checkout is all-or-nothing: every line is priced from the catalog and
    stock-checked before anything is written, then stock decrements, the order,
    its item snapshots and the cleanup of the source commit as one transaction.

    The service is also the only writer of order status and, through
    cancellations, the only other writer of product stock.
    """

    def __init__(self, db: Session, lock_service: LockService):
        self.db = db
        self.repo = OrderRepo(db)
        self.products = ProductRepo(db)
        self.cart_repo = CartRepo(db)
        self.catalog = CatalogService(db)
        self.buy_now = BuyNowService(db)
        self.lock_service = lock_service

    # commands
    def place_order(self, source: CheckoutSource, customer: CustomerIn) -> Dict[str, Any]:
        if isinstance(source, CartSource):
            # no add/remove may slip in between reading the cart and clearing it
            with self.lock_service.hold(source.owner):
                order_id = self._place(source, customer)
        else:
            order_id = self._place(source, customer)

        return order_view(self.repo.get_order(order_id))

    def _place(self, source: CheckoutSource, customer: CustomerIn) -> int:
        with atomic(self.db):
            owner, lines, cart_item_ids = self._load_source(source)

            # nothing is written until every line passed
            priced: List[Tuple[ProductModel, int]] = []
            for product_id, quantity in lines:
                product = self.catalog.get_active_product(product_id, fresh=True)
                self._ensure_stock(product, quantity)
                priced.append((product, quantity))

            items = []
            total = Decimal("0.00")
            for product, quantity in priced:
                unit_price = product.effective_price
                total_price = line_total(unit_price, quantity)
                total += total_price
                items.append(
                    OrderItemModel(
                        product_id=product.id,
                        product_name=product.name,
                        product_sku=product.sku,
                        unit_price=unit_price,
                        quantity=quantity,
                        total_price=total_price,
                    )
                )

            for product, quantity in priced:
                if product.manage_stock:
                    self._reserve(product.id, quantity)

            order = self.repo.add_order(
                OrderModel(
                    order_number=self._unique_order_number(),
                    source="cart" if isinstance(source, CartSource) else "buy_now",
                    status=OrderStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    total_amount=total,
                    customer_name=customer.customer_name,
                    customer_email=customer.customer_email,
                    customer_phone=customer.customer_phone,
                    shipping_address=customer.shipping_address,
                    billing_address=customer.billing_address or customer.shipping_address,
                    payment_method=customer.payment_method.value,
                    notes=customer.notes,
                    **owner.columns(),
                )
            )
            for item in items:
                item.order_id = order.id
            self.repo.add_order_items(items)
            self.repo.add_history(order.id, OrderStatus.PENDING.value, "Order created")

            if cart_item_ids:
                self.cart_repo.delete_items(owner, cart_item_ids)

            order_id = order.id
            order_number = order.order_number

        logger.info(
            f"Order {order_number} placed from {type(source).__name__} "
            f"for {owner.lock_key}: {len(items)} line(s), total {total}"
        )
        return order_id

    def _load_source(self, source: CheckoutSource) -> Tuple[Owner, List[Tuple[int, int]], List[int]]:
        if isinstance(source, CartSource):
            rows = self.cart_repo.list_visible(source.owner)
            if not rows:
                raise InvalidInput("Cart is empty", code="EMPTY_CART")
            lines = [(item.product_id, item.quantity) for item, _ in rows]
            return source.owner, lines, [item.id for item, _ in rows]

        session = self.buy_now.load_live(source.token, source.owner)
        owner = owner_from_columns(session.session_id, session.user_id)
        lines = [(item.product_id, item.quantity) for item in session.items]
        # one-shot, rolled back together with everything else on failure
        self.buy_now.mark_consumed(source.token)
        return owner, lines, []

    @staticmethod
    def _ensure_stock(product: ProductModel, quantity: int) -> None:
        if product.manage_stock and product.stock_quantity < quantity:
            raise InsufficientStock(product.id, product.name, quantity, max(0, product.stock_quantity))

    def _reserve(self, product_id: int, quantity: int) -> None:
        try:
            self._decrement(product_id, quantity)
        except StaleStockVersion as e:
            logger.warning(f"Giving up on stock of product {e.product_id} after repeated conflicts")
            raise Conflict(
                f'Stock of "{e.product_name}" is changing too fast, try again',
                code="STOCK_CONFLICT",
                product_id=e.product_id,
            )

    @stock_retry()
    def _decrement(self, product_id: int, quantity: int) -> None:
        product = self.catalog.get_active_product(product_id, fresh=True)
        self._ensure_stock(product, quantity)

        if not self.products.decrement_stock(product.id, product.version, quantity):
            logger.info(f"Stock version of product {product.id} moved, re-reading")
            raise StaleStockVersion(product.id, product.name)

    def _unique_order_number(self) -> str:
        for _ in range(5):
            candidate = generate_order_number()
            if not self.repo.order_number_exists(candidate):
                return candidate
        raise Conflict("Could not allocate an order number", code="ORDER_NUMBER_CONFLICT")

    def transition(
        self,
        order_id: int,
        status: str,
        comment: str | None = None,
        tracking_number: str | None = None,
    ) -> Dict[str, Any]:
        with atomic(self.db):
            order = self.repo.get_order(order_id)
            if not order:
                raise NotFound("Order not found", code="ORDER_NOT_FOUND", order_id=order_id)
            self._apply(order, status, comment, tracking_number)

        return order_view(self.repo.get_order(order_id), with_history=True)

    def cancel(self, owner: Owner, order_id: int, reason: str | None = None) -> Dict[str, Any]:
        with atomic(self.db):
            order = self.repo.get_for_owner(owner, str(order_id))
            if not order:
                raise NotFound("Order not found", code="ORDER_NOT_FOUND", order_id=order_id)
            if OrderStatus(order.status) not in CUSTOMER_CANCELLABLE:
                raise InvalidTransition(order.status, OrderStatus.CANCELLED.value)
            self._apply(order, OrderStatus.CANCELLED.value, reason or "Order cancelled")

        return order_view(self.repo.get_order(order_id), with_history=True)

    def _apply(
        self,
        order: OrderModel,
        status: str,
        comment: str | None,
        tracking_number: str | None = None,
    ) -> None:
        current = order.status
        target = ensure_transition(current, status)
        now = datetime.now(timezone.utc)

        values: Dict[str, Any] = {"status": target.value}
        if target is OrderStatus.SHIPPED and tracking_number:
            values["tracking_number"] = tracking_number
        elif target is OrderStatus.DELIVERED:
            values["delivered_at"] = now
        elif target is OrderStatus.CANCELLED:
            values["cancelled_at"] = now
            for item in order.items:
                self.products.restock(item.product_id, item.quantity)

        if not self.repo.update_status(order.id, current, values):
            raise Conflict("Order was updated by another request", code="ORDER_CONFLICT")
        self.repo.add_history(order.id, target.value, comment)

        logger.info(f"Order {order.order_number}: {current} -> {target.value}")

    def set_payment_status(
        self,
        order_id: int,
        payment_status: str,
        comment: str | None = None,
    ) -> Dict[str, Any]:
        """Admin bookkeeping of the payment state, independent of the order status machine."""
        try:
            target = PaymentStatus(payment_status)
        except ValueError:
            raise InvalidInput(f"Unknown payment status {payment_status}", code="INVALID_PAYMENT_STATUS")

        with atomic(self.db):
            order = self.repo.get_order(order_id)
            if not order:
                raise NotFound("Order not found", code="ORDER_NOT_FOUND", order_id=order_id)
            previous = order.payment_status
            self.repo.update_payment_status(order.id, target.value)
            self.repo.add_history(order.id, payment_history_status(target), comment)
            order_number = order.order_number

        logger.info(f"Order {order_number}: payment {previous} -> {target.value}")
        return order_view(self.repo.get_order(order_id), with_history=True)

    # query
    def get_order(self, owner: Owner, identifier: str) -> Dict[str, Any]:
        with reading(self.db):
            order = self.repo.get_for_owner(owner, identifier)
            if not order:
                raise NotFound("Order not found", code="ORDER_NOT_FOUND", identifier=identifier)
            return order_view(order, with_history=True)

    def list_orders(
        self,
        owner: Owner,
        page: int = 1,
        limit: int = 10,
        status: str | None = None,
        payment_status: str | None = None,
    ) -> Dict[str, Any]:
        if page < 1 or not 1 <= limit <= 100:
            raise InvalidInput("Invalid pagination", code="INVALID_PAGINATION")
        if status is not None:
            try:
                status = OrderStatus(status).value
            except ValueError:
                raise InvalidInput(f"Unknown order status {status}", code="INVALID_STATUS")
        if payment_status is not None:
            try:
                payment_status = PaymentStatus(payment_status).value
            except ValueError:
                raise InvalidInput(f"Unknown payment status {payment_status}", code="INVALID_PAYMENT_STATUS")

        with reading(self.db):
            total_orders = self.repo.count_for_owner(owner, status, payment_status)
            orders = self.repo.list_for_owner(owner, (page - 1) * limit, limit, status, payment_status)
            views = [order_view(o) for o in orders]
        total_pages = math.ceil(total_orders / limit) if total_orders else 0

        return {
            "orders": views,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_orders": total_orders,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }
