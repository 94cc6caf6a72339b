# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_lock_service, get_owner, to_http
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.order_status import OrderStatus, PaymentStatus
from storefront.domain.owner import Owner
from storefront.domain.schemas import (
    CancelIn,
    CheckoutIn,
    OrderListOut,
    OrderOut,
    PaymentStatusIn,
    StatusUpdateIn,
)
from storefront.services.lock_service import LockService
from storefront.services.order_service import BuyNowSource, CartSource, OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session, lock_service: LockService | None = None):
    return OrderService(db=db, lock_service=lock_service)


@router.post("", response_model=OrderOut, status_code=201)
def place_order(
    payload: CheckoutIn,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Checkout. Without ``buy_now_token`` the owner's cart is converted, with
    it only the buy-now session is, and the cart is left alone.
    """
    svc = get_service(db, lock_service)
    if payload.buy_now_token:
        source = BuyNowSource(token=payload.buy_now_token, owner=owner)
    else:
        source = CartSource(owner=owner)
    try:
        return svc.place_order(source, payload)
    except StorefrontError as e:
        raise to_http(e)


@router.get("", response_model=OrderListOut)
def list_orders(
    owner: Owner = Depends(get_owner),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: OrderStatus | None = Query(None),
    payment_status: PaymentStatus | None = Query(None),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.list_orders(
            owner,
            page,
            limit,
            status.value if status else None,
            payment_status.value if payment_status else None,
        )
    except StorefrontError as e:
        raise to_http(e)


@router.get("/{identifier}", response_model=OrderOut)
def get_order(
    identifier: str,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    """Order by numeric id or by order number."""
    svc = get_service(db)
    try:
        return svc.get_order(owner, identifier)
    except StorefrontError as e:
        raise to_http(e)


@router.put("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: StatusUpdateIn,
    db: Session = Depends(get_db),
):
    """Admin transition; the admin auth check lives in front of this service."""
    svc = get_service(db)
    try:
        return svc.transition(order_id, payload.status.value, payload.comment, payload.tracking_number)
    except StorefrontError as e:
        raise to_http(e)


@router.put("/{order_id}/payment-status", response_model=OrderOut)
def update_payment_status(
    order_id: int,
    payload: PaymentStatusIn,
    db: Session = Depends(get_db),
):
    """Admin only, like status updates."""
    svc = get_service(db)
    try:
        return svc.set_payment_status(order_id, payload.payment_status.value, payload.comment)
    except StorefrontError as e:
        raise to_http(e)


@router.put("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    payload: CancelIn | None = None,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    try:
        return svc.cancel(owner, order_id, payload.reason if payload else None)
    except StorefrontError as e:
        raise to_http(e)
