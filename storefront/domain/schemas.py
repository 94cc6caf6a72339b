# storefront/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from storefront.domain.order_status import OrderStatus, PaymentMethod, PaymentStatus


class ProductOut(BaseModel):
    """Product as shown next to the add-to-cart button."""

    id: int
    name: str
    slug: str
    sku: str | None = None
    price: Decimal
    sale_price: Decimal | None = None
    effective_price: Decimal
    stock_quantity: int
    manage_stock: bool
    status: str

    model_config = ConfigDict(from_attributes=True)


class ItemIn(BaseModel):
    """Product line in a request."""

    product_id: int = Field(..., gt=0, description="Product ID (must be > 0)")
    quantity: int = Field(1, gt=0, description="Quantity (must be > 0)")


class QuantityIn(BaseModel):
    # 0 removes the line
    quantity: int = Field(..., ge=0)


class MergeIn(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    user_id: int = Field(..., gt=0)


class CartLineOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    sku: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    stock_quantity: int
    created_at: datetime


class CartSummaryOut(BaseModel):
    item_count: int
    subtotal: Decimal


class CartOut(BaseModel):
    items: List[CartLineOut]
    summary: CartSummaryOut


class CartCountOut(BaseModel):
    count: int


class CartMutationOut(BaseModel):
    cart_item_id: int
    product_id: int | None = None
    quantity: int | None = None
    requested_quantity: int | None = None
    clamped: bool = False
    removed: bool | None = None
    action: str


class MergeOut(BaseModel):
    merged: int
    rekeyed: int
    clamped: List[int]


class BuyNowIn(BaseModel):
    items: List[ItemIn] = Field(..., min_length=1, max_length=20)
    token: str | None = Field(None, min_length=1, max_length=64)


class BuyNowLineOut(BaseModel):
    product_id: int
    product_name: str | None = None
    sku: str | None = None
    quantity: int
    unit_price: Decimal | None = None
    line_total: Decimal | None = None
    available: bool


class BuyNowSummaryOut(BaseModel):
    item_count: int
    subtotal: Decimal
    total: Decimal


class AdjustedLineOut(BaseModel):
    product_id: int
    requested: int
    quantity: int


class BuyNowOut(BaseModel):
    token: str
    items: List[BuyNowLineOut]
    summary: BuyNowSummaryOut
    expires_at: datetime
    adjusted: List[AdjustedLineOut] = []


class CustomerIn(BaseModel):
    """Customer and shipping snapshot stored on the order."""

    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    customer_phone: str | None = Field(None, max_length=50)
    shipping_address: str = Field(..., min_length=1)
    billing_address: str | None = None
    payment_method: PaymentMethod = PaymentMethod.COD
    notes: str | None = None


class CheckoutIn(CustomerIn):
    """Checkout of the owner's cart, or of a buy-now session when a token is given."""

    buy_now_token: str | None = Field(None, min_length=1, max_length=64)


class OrderItemOut(BaseModel):
    product_id: int
    product_name: str
    product_sku: str | None = None
    unit_price: Decimal
    quantity: int
    total_price: Decimal


class StatusHistoryOut(BaseModel):
    status: str
    comment: str | None = None
    created_at: datetime


class OrderOut(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    source: str
    total_amount: Decimal
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    shipping_address: str
    billing_address: str
    payment_method: str
    notes: str | None = None
    tracking_number: str | None = None
    created_at: datetime
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    items: List[OrderItemOut]
    history: List[StatusHistoryOut] | None = None


class PaginationOut(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_prev: bool


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    pagination: PaginationOut


class StatusUpdateIn(BaseModel):
    status: OrderStatus
    comment: str | None = None
    tracking_number: str | None = Field(None, max_length=100)


class CancelIn(BaseModel):
    reason: str | None = None


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus
    comment: str | None = None
