# storefront/domain/order_status.py
from enum import Enum
from typing import Dict, FrozenSet

from storefront.domain.errors import InvalidTransition


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# statuses in which the shopper may still cancel on their own
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


def ensure_transition(current: str, target: str) -> OrderStatus:
    current_status = OrderStatus(current)
    try:
        target_status = OrderStatus(target)
    except ValueError:
        raise InvalidTransition(current_status.value, str(target))

    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransition(current_status.value, target_status.value)
    return target_status


class PaymentMethod(str, Enum):
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    E_WALLET = "e_wallet"


class PaymentStatus(str, Enum):
    """Tracked by hand from the back office, no gateway involved."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def payment_history_status(payment_status: PaymentStatus) -> str:
    # payment changes share the status history with order transitions
    return f"payment_{payment_status.value}"
