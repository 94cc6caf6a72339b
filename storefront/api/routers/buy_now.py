# storefront/api/routers/buy_now.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_owner, to_http
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.owner import Owner
from storefront.domain.schemas import BuyNowIn, BuyNowOut
from storefront.services.buy_now_service import BuyNowService

router = APIRouter(prefix="/buy-now", tags=["buy-now"])


@router.post("", response_model=BuyNowOut, status_code=201)
def create_buy_now(
    payload: BuyNowIn,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    svc = BuyNowService(db)
    try:
        return svc.create(
            owner,
            [(item.product_id, item.quantity) for item in payload.items],
            token=payload.token,
        )
    except StorefrontError as e:
        raise to_http(e)


@router.get("/{token}", response_model=BuyNowOut)
def get_buy_now(
    token: str,
    owner: Owner = Depends(get_owner),
    db: Session = Depends(get_db),
):
    svc = BuyNowService(db)
    try:
        return svc.get(token, owner)
    except StorefrontError as e:
        raise to_http(e)
