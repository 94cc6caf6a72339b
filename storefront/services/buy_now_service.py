# storefront/services/buy_now_service.py
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Tuple

from sqlalchemy.orm import Session

from storefront.data.database import atomic, reading
from storefront.data.models.buy_now import BuyNowItemModel, BuyNowSessionModel, as_utc
from storefront.domain.errors import Conflict, InsufficientStock, InvalidInput, NotFound
from storefront.domain.owner import Owner, owner_from_columns
from storefront.repos.buy_now_repo import BuyNowRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.catalog_service import CatalogService, line_total
from storefront.utils.settings import BUY_NOW_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

TOKEN_PREFIX = "buynow_"


def new_token() -> str:
    return f"{TOKEN_PREFIX}{uuid.uuid4().hex}"


class BuyNowService:
    """
    Immediate purchase intent kept apart from the persistent cart.

    A session holds one (or a few) product lines under its own token, lives
    for BUY_NOW_TTL_SECONDS and can feed exactly one checkout. Nothing here
    reads or writes cart rows.
    """

    def __init__(self, db: Session, ttl_seconds: int = BUY_NOW_TTL_SECONDS):
        self.db = db
        self.repo = BuyNowRepo(db)
        self.catalog = CatalogService(db)
        self.products = ProductRepo(db)
        self.ttl_seconds = ttl_seconds

    def create(
        self,
        owner: Owner,
        items: Iterable[Tuple[int, int]],
        token: str | None = None,
    ) -> Dict[str, Any]:
        merged: Dict[int, int] = {}
        for product_id, quantity in items:
            if quantity is None or quantity < 1:
                raise InvalidInput("Quantity must be at least 1", code="INVALID_QUANTITY")
            merged[product_id] = merged.get(product_id, 0) + quantity

        if not merged:
            raise InvalidInput("At least one item is required", code="EMPTY_BUY_NOW")

        if token is not None and (not token.strip() or len(token) > 64):
            raise InvalidInput("Invalid buy now session token", code="INVALID_TOKEN")

        lines = []
        adjusted = []
        for product_id, quantity in merged.items():
            product = self.catalog.get_active_product(product_id)
            cap = self.catalog.available_stock(product)
            if cap == 0:
                raise InsufficientStock(product.id, product.name, quantity, 0)

            final = quantity if cap is None else min(quantity, cap)
            if final < quantity:
                adjusted.append({"product_id": product_id, "requested": quantity, "quantity": final})
            lines.append(BuyNowItemModel(product_id=product_id, quantity=final))

        token = token or new_token()
        now = datetime.now(timezone.utc)

        with atomic(self.db):
            if self.repo.get_session(token):
                raise Conflict("Buy now session token already in use", code="TOKEN_IN_USE")

            self.repo.add_session(
                BuyNowSessionModel(
                    token=token,
                    expires_at=now + timedelta(seconds=self.ttl_seconds),
                    items=lines,
                    **owner.columns(),
                )
            )

        logger.info(f"Buy now session {token} created with {len(lines)} line(s) for {owner.lock_key}")

        view = self.get(token, owner)
        view["adjusted"] = adjusted
        return view

    def load_live(self, token: str, owner: Owner | None = None) -> BuyNowSessionModel:
        """Live session behind token. Someone else's session looks exactly like a missing one."""
        session = self.repo.get_session(token)
        if (
            not session
            or not session.is_live()
            or (owner is not None and owner_from_columns(session.session_id, session.user_id) != owner)
        ):
            raise NotFound(
                "Buy now session expired or not found",
                code="BUY_NOW_NOT_FOUND",
                token=token,
            )
        return session

    def get(self, token: str, owner: Owner | None = None) -> Dict[str, Any]:
        with reading(self.db):
            session = self.load_live(token, owner)
            products = {p.id: p for p in self.products.get_products(i.product_id for i in session.items)}

        items = []
        subtotal = Decimal("0.00")
        item_count = 0
        for line in session.items:
            product = products.get(line.product_id)
            if product is None:
                items.append(
                    {
                        "product_id": line.product_id,
                        "product_name": None,
                        "sku": None,
                        "quantity": line.quantity,
                        "unit_price": None,
                        "line_total": None,
                        "available": False,
                    }
                )
                continue

            unit_price = product.effective_price
            total = line_total(unit_price, line.quantity)
            subtotal += total
            item_count += line.quantity
            items.append(
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "sku": product.sku,
                    "quantity": line.quantity,
                    "unit_price": unit_price,
                    "line_total": total,
                    "available": product.is_active,
                }
            )

        return {
            "token": session.token,
            "items": items,
            "summary": {"item_count": item_count, "subtotal": subtotal, "total": subtotal},
            "expires_at": as_utc(session.expires_at),
        }

    def mark_consumed(self, token: str) -> None:
        """Flip the one-shot flag inside the caller's transaction."""
        if not self.repo.consume(token, datetime.now(timezone.utc)):
            raise NotFound(
                "Buy now session expired or already used",
                code="BUY_NOW_NOT_FOUND",
                token=token,
            )

    def consume(self, token: str) -> None:
        with atomic(self.db):
            self.mark_consumed(token)
        logger.info(f"Buy now session {token} consumed")

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        with atomic(self.db):
            purged = self.repo.purge(now)
        if purged:
            logger.info(f"Purged {purged} buy now session(s)")
        return purged
