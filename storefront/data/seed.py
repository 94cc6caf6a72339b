# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import SessionLocal, atomic
from storefront.data.models.product import ProductModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_PRODUCTS = [
    {"name": "Keyboard", "slug": "keyboard", "sku": "KB-001", "price": Decimal("199.99"), "stock_quantity": 25},
    {"name": "Mouse", "slug": "mouse", "sku": "MS-001", "price": Decimal("49.50"), "sale_price": Decimal("39.90"), "stock_quantity": 100},
    {"name": "Monitor", "slug": "monitor", "sku": "MN-001", "price": Decimal("899.00"), "stock_quantity": 3},
]


def seed(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        # only seed an empty catalog
        if db.query(ProductModel).first():
            return 0
        with atomic(db):
            db.add_all(ProductModel(**data) for data in DEMO_PRODUCTS)
        logger.info(f"Seeded {len(DEMO_PRODUCTS)} demo products")
        return len(DEMO_PRODUCTS)
    finally:
        db.close()
