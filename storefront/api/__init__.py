# storefront/api/__init__.py
from fastapi import FastAPI

from storefront.api.routers import buy_now, carts, health, orders, products


def create_app() -> FastAPI:
    app = FastAPI(
        title="Storefront Cart & Checkout Service",
        version="1.0.0",
    )

    app.include_router(health.router)
    app.include_router(products.router)
    app.include_router(carts.router)
    app.include_router(buy_now.router)
    app.include_router(orders.router)

    return app
