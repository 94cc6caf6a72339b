"""
Pytest fixtures: SQLite in-memory database, fake Redis behind the real
LockService, product factory and a FastAPI client wired to both.
"""
import itertools
import os
from decimal import Decimal
from unittest.mock import MagicMock

# set before importing storefront modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import storefront.data.models  # noqa: F401
from storefront.api import create_app
from storefront.api.deps import get_lock_service
from storefront.data.database import Base, get_db
from storefront.data.models.product import ProductModel
from storefront.services.lock_service import LockService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def redis_client() -> MagicMock:
    """Redis stand-in: every SET NX succeeds, every compare-and-delete releases."""
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    return client


@pytest.fixture
def lock_service(redis_client) -> LockService:
    return LockService(client=redis_client, wait_attempts=2, wait_interval=0)


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(
        name: str | None = None,
        price: str = "10.00",
        sale_price: str | None = None,
        stock: int = 10,
        status: str = "active",
        manage_stock: bool = True,
    ) -> ProductModel:
        n = next(counter)
        product = ProductModel(
            name=name or f"Product {n}",
            slug=f"product-{n}",
            sku=f"SKU-{n:03d}",
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            stock_quantity=stock,
            manage_stock=manage_stock,
            status=status,
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def stock_of(session_factory):
    """Reads stock through a separate session, the way another request would."""

    def _stock(product_id: int) -> int:
        session = session_factory()
        try:
            return session.execute(
                select(ProductModel.stock_quantity).where(ProductModel.id == product_id)
            ).scalar_one()
        finally:
            session.close()

    return _stock


@pytest.fixture
def client(session_factory, lock_service):
    app = create_app()

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    return TestClient(app)
