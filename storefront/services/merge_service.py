# storefront/services/merge_service.py
from typing import Any, Dict

from sqlalchemy.orm import Session

from storefront.data.database import atomic
from storefront.domain.owner import Account, Anonymous
from storefront.repos.cart_repo import CartRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.lock_service import LockService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class SessionMergeService:
    """
    Folds an anonymous cart into the account cart at login.

    Products the account already holds are summed and clamped to stock (a sold
    out product leaves the account cart), the rest are re-keyed to the account.
    The anonymous cart is empty afterwards, so merging twice is a no-op.
    """

    def __init__(self, db: Session, lock_service: LockService):
        self.db = db
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)
        self.lock_service = lock_service

    def merge(self, session_owner: Anonymous, account_owner: Account) -> Dict[str, Any]:
        merged = 0
        rekeyed = 0
        clamped = []

        with self.lock_service.hold(session_owner, account_owner):
            with atomic(self.db):
                for item in self.repo.list_all(session_owner):
                    target = self.repo.get_by_product(account_owner, item.product_id)

                    if target is None:
                        self.repo.rekey(item.id, account_owner)
                        rekeyed += 1
                        continue

                    wanted = target.quantity + item.quantity
                    final = wanted
                    product = self.products.get_product(item.product_id)
                    if product is not None and product.manage_stock:
                        final = min(wanted, max(0, product.stock_quantity))
                    if final < wanted:
                        clamped.append(item.product_id)

                    if final:
                        self.repo.set_quantity(target.id, final)
                    else:
                        # sold out: clamping to zero drops the line, as a zero update does
                        self.repo.delete_cart_item(account_owner, target.id)
                    self.repo.delete_cart_item(session_owner, item.id)
                    merged += 1

                # anything left under the session (nothing, normally) goes too
                self.repo.clear(session_owner)

        if merged or rekeyed:
            logger.info(
                f"Merged cart {session_owner.lock_key} into {account_owner.lock_key}: "
                f"{merged} summed, {rekeyed} moved, {len(clamped)} clamped"
            )
        return {"merged": merged, "rekeyed": rekeyed, "clamped": clamped}
