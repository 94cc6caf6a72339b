# storefront/api/routers/carts.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_lock_service, get_owner, to_http
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.owner import Account, Anonymous, Owner
from storefront.domain.schemas import (
    CartCountOut,
    CartMutationOut,
    CartOut,
    ItemIn,
    MergeIn,
    MergeOut,
    QuantityIn,
)
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from storefront.services.merge_service import SessionMergeService

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session, lock_service: LockService | None = None):
    return CartService(db=db, lock_service=lock_service)


@router.get("", response_model=CartOut)
def get_cart(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    # reads only, no lock needed
    try:
        return get_service(db).list(owner)
    except StorefrontError as e:
        raise to_http(e)


@router.get("/count", response_model=CartCountOut)
def get_cart_count(owner: Owner = Depends(get_owner), db: Session = Depends(get_db)):
    try:
        return {"count": get_service(db).count(owner)}
    except StorefrontError as e:
        raise to_http(e)


@router.post("/items", response_model=CartMutationOut)
def add_item(
    payload: ItemIn,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = get_service(db, lock_service)
    try:
        return svc.add_item(owner, payload.product_id, payload.quantity)
    except StorefrontError as e:
        raise to_http(e)


@router.patch("/items/{cart_item_id}", response_model=CartMutationOut)
def update_item(
    cart_item_id: int,
    payload: QuantityIn,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = get_service(db, lock_service)
    try:
        return svc.update_quantity(owner, cart_item_id, payload.quantity)
    except StorefrontError as e:
        raise to_http(e)


@router.delete("/items/{cart_item_id}", response_model=CartMutationOut)
def remove_item(
    cart_item_id: int,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = get_service(db, lock_service)
    try:
        return svc.remove_item(owner, cart_item_id)
    except StorefrontError as e:
        raise to_http(e)


@router.delete("")
def clear_cart(
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = get_service(db, lock_service)
    try:
        return {"removed": svc.clear(owner)}
    except StorefrontError as e:
        raise to_http(e)


@router.post("/merge", response_model=MergeOut)
def merge_cart(
    payload: MergeIn,
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Called by the auth layer right after login: moves the anonymous cart of
    ``session_id`` into the account cart of ``user_id``.
    """
    svc = SessionMergeService(db=db, lock_service=lock_service)
    try:
        return svc.merge(Anonymous(payload.session_id), Account(payload.user_id))
    except StorefrontError as e:
        raise to_http(e)
