# import every model so SQLAlchemy registers it in Base.metadata

from storefront.data.models.product import ProductModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.buy_now import BuyNowSessionModel, BuyNowItemModel
from storefront.data.models.order import OrderModel, OrderItemModel, OrderStatusHistoryModel

__all__ = [
    "ProductModel",
    "CartItemModel",
    "BuyNowSessionModel",
    "BuyNowItemModel",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
]
