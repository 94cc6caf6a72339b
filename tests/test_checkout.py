from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from storefront.data.models.buy_now import BuyNowSessionModel
from storefront.data.models.order import OrderModel
from storefront.domain.errors import (
    Conflict,
    InsufficientStock,
    InvalidInput,
    NotFound,
    StorageFailure,
)
from storefront.domain.owner import Account, Anonymous
from storefront.domain.schemas import CustomerIn
from storefront.repos.cart_repo import CartRepo
from storefront.services.buy_now_service import BuyNowService
from storefront.services.cart_service import CartService
from storefront.services.order_service import BuyNowSource, CartSource, OrderService

CUSTOMER = CustomerIn(
    customer_name="Jan Kowalski",
    customer_email="jan@example.com",
    shipping_address="ul. Prosta 1, Warszawa",
)


@pytest.fixture
def carts(db, lock_service):
    return CartService(db, lock_service)


@pytest.fixture
def buy_now(db):
    return BuyNowService(db)


@pytest.fixture
def orders(db, lock_service):
    return OrderService(db, lock_service)


def order_count(db):
    return db.execute(select(func.count(OrderModel.id))).scalar_one()


class TestCartCheckout:
    def test_places_order_and_empties_cart(self, db, carts, orders, make_product, stock_of):
        owner = Account(1)
        keyboard = make_product(name="Keyboard", price="199.99", stock=5)
        mouse = make_product(name="Mouse", price="49.50", sale_price="39.90", stock=5)
        carts.add_item(owner, keyboard.id, 1)
        carts.add_item(owner, mouse.id, 2)

        order = orders.place_order(CartSource(owner), CUSTOMER)

        assert order["status"] == "pending"
        assert order["source"] == "cart"
        assert order["order_number"].startswith("HD")
        assert order["total_amount"] == Decimal("279.79")
        assert order["billing_address"] == CUSTOMER.shipping_address
        assert {i["product_id"]: i["quantity"] for i in order["items"]} == {keyboard.id: 1, mouse.id: 2}
        assert stock_of(keyboard.id) == 4
        assert stock_of(mouse.id) == 3
        assert carts.list(owner)["items"] == []

    def test_price_is_snapshotted(self, db, carts, orders, make_product):
        owner = Account(1)
        product = make_product(name="Monitor", price="899.00", stock=3)
        carts.add_item(owner, product.id, 1)
        order = orders.place_order(CartSource(owner), CUSTOMER)

        product.price = Decimal("999.00")
        product.name = "Monitor v2"
        db.commit()

        fetched = orders.get_order(owner, order["order_number"])
        assert fetched["items"][0]["unit_price"] == Decimal("899.00")
        assert fetched["items"][0]["product_name"] == "Monitor"
        assert fetched["total_amount"] == Decimal("899.00")

    def test_empty_cart(self, orders):
        with pytest.raises(InvalidInput) as exc_info:
            orders.place_order(CartSource(Account(1)), CUSTOMER)
        assert exc_info.value.code == "EMPTY_CART"

    def test_all_or_nothing(self, db, carts, orders, make_product, stock_of):
        owner = Anonymous("guest-1")
        plenty = make_product(stock=10)
        scarce = make_product(name="Scarce", stock=5)
        carts.add_item(owner, plenty.id, 2)
        carts.add_item(owner, scarce.id, 3)

        scarce.stock_quantity = 1
        db.commit()

        with pytest.raises(InsufficientStock) as exc_info:
            orders.place_order(CartSource(owner), CUSTOMER)

        detail = exc_info.value.to_dict()
        assert detail["product_id"] == scarce.id
        assert detail["available"] == 1
        assert detail["requested"] == 3
        assert stock_of(plenty.id) == 10
        assert stock_of(scarce.id) == 1
        assert order_count(db) == 0
        assert len(CartRepo(db).list_all(owner)) == 2

    def test_inactive_product_lines_are_skipped(self, db, carts, orders, make_product, stock_of):
        owner = Account(1)
        kept = make_product(stock=5)
        hidden = make_product(stock=5)
        carts.add_item(owner, kept.id, 1)
        carts.add_item(owner, hidden.id, 1)
        hidden.status = "inactive"
        db.commit()

        order = orders.place_order(CartSource(owner), CUSTOMER)

        assert [i["product_id"] for i in order["items"]] == [kept.id]
        assert stock_of(hidden.id) == 5
        # the hidden line stays for when the product comes back
        assert [i.product_id for i in CartRepo(db).list_all(owner)] == [hidden.id]

    def test_unmanaged_stock_is_not_decremented(self, carts, orders, make_product, stock_of):
        owner = Account(1)
        product = make_product(stock=0, manage_stock=False)
        carts.add_item(owner, product.id, 7)

        order = orders.place_order(CartSource(owner), CUSTOMER)

        assert order["items"][0]["quantity"] == 7
        assert stock_of(product.id) == 0

    def test_storage_failure_rolls_everything_back(self, db, carts, orders, make_product, stock_of, monkeypatch):
        owner = Account(1)
        product = make_product(stock=5)
        carts.add_item(owner, product.id, 2)

        def broken(items):
            raise OperationalError("INSERT INTO order_items", {}, Exception("disk I/O error"))

        monkeypatch.setattr(orders.repo, "add_order_items", broken)

        with pytest.raises(StorageFailure) as exc_info:
            orders.place_order(CartSource(owner), CUSTOMER)

        assert exc_info.value.retryable is True
        assert stock_of(product.id) == 5
        assert order_count(db) == 0
        assert carts.list(owner)["summary"]["item_count"] == 2

    def test_holds_owner_lock(self, carts, orders, redis_client, make_product):
        owner = Account(5)
        carts.add_item(owner, make_product().id, 1)
        redis_client.set.reset_mock()

        orders.place_order(CartSource(owner), CUSTOMER)

        assert redis_client.set.call_args.kwargs["name"] == "cart:account:5:lock"


class TestBuyNowCheckout:
    def test_consumes_session_and_keeps_cart(self, db, carts, buy_now, orders, make_product, stock_of):
        owner = Account(1)
        in_cart = make_product(stock=5)
        bought = make_product(stock=5)
        carts.add_item(owner, in_cart.id, 2)
        token = buy_now.create(owner, [(bought.id, 1)])["token"]

        order = orders.place_order(BuyNowSource(token, owner), CUSTOMER)

        assert order["source"] == "buy_now"
        assert [i["product_id"] for i in order["items"]] == [bought.id]
        assert stock_of(bought.id) == 4
        assert stock_of(in_cart.id) == 5
        assert carts.list(owner)["summary"]["item_count"] == 2
        with pytest.raises(NotFound):
            buy_now.get(token)

    def test_double_submit_places_one_order(self, db, buy_now, orders, make_product, stock_of):
        owner = Anonymous("guest-2")
        product = make_product(stock=5)
        token = buy_now.create(owner, [(product.id, 2)])["token"]

        orders.place_order(BuyNowSource(token, owner), CUSTOMER)
        with pytest.raises(NotFound) as exc_info:
            orders.place_order(BuyNowSource(token, owner), CUSTOMER)

        assert exc_info.value.code == "BUY_NOW_NOT_FOUND"
        assert order_count(db) == 1
        assert stock_of(product.id) == 3

    def test_foreign_session_is_not_found(self, db, buy_now, orders, make_product):
        product = make_product()
        token = buy_now.create(Account(1), [(product.id, 1)])["token"]

        with pytest.raises(NotFound):
            orders.place_order(BuyNowSource(token, Account(2)), CUSTOMER)

        assert buy_now.get(token)["token"] == token

    def test_deactivated_product_is_rejected(self, db, buy_now, orders, make_product, stock_of):
        owner = Account(1)
        product = make_product(name="Lamp", stock=5)
        token = buy_now.create(owner, [(product.id, 1)])["token"]
        product.status = "inactive"
        db.commit()

        with pytest.raises(InvalidInput) as exc_info:
            orders.place_order(BuyNowSource(token, owner), CUSTOMER)

        assert exc_info.value.code == "PRODUCT_UNAVAILABLE"
        assert "Lamp" in exc_info.value.message
        assert stock_of(product.id) == 5
        assert order_count(db) == 0

    def test_failed_checkout_leaves_session_usable(self, db, buy_now, orders, make_product, stock_of):
        owner = Account(1)
        product = make_product(stock=5)
        token = buy_now.create(owner, [(product.id, 3)])["token"]
        product.stock_quantity = 2
        db.commit()

        with pytest.raises(InsufficientStock):
            orders.place_order(BuyNowSource(token, owner), CUSTOMER)

        session = db.get(BuyNowSessionModel, token)
        db.refresh(session)
        assert session.consumed_at is None
        assert stock_of(product.id) == 2


class TestConcurrentStock:
    def test_last_unit_goes_to_one_buyer(self, db, session_factory, lock_service, make_product, stock_of):
        product = make_product(stock=1)
        first_db = session_factory()
        second_db = session_factory()
        try:
            first_carts = CartService(first_db, lock_service)
            second_carts = CartService(second_db, lock_service)
            first_carts.add_item(Account(1), product.id, 1)
            second_carts.add_item(Account(2), product.id, 1)

            second = OrderService(second_db, lock_service)
            # the second request has already read the product with one unit left
            assert second.catalog.get_product(product.id).stock_quantity == 1

            OrderService(first_db, lock_service).place_order(CartSource(Account(1)), CUSTOMER)

            with pytest.raises(InsufficientStock):
                second.place_order(CartSource(Account(2)), CUSTOMER)
        finally:
            first_db.close()
            second_db.close()

        assert stock_of(product.id) == 0
        assert order_count(db) == 1

    def test_lost_race_between_check_and_decrement(self, db, session_factory, lock_service, make_product, stock_of, monkeypatch):
        product = make_product(stock=1)
        carts = CartService(db, lock_service)
        carts.add_item(Account(1), product.id, 1)
        carts.add_item(Account(2), product.id, 1)

        loser = OrderService(db, lock_service)
        real_decrement = loser.products.decrement_stock

        def decrement_after_rival(product_id, old_version, quantity):
            # the rival checkout commits between our stock check and our update
            monkeypatch.setattr(loser.products, "decrement_stock", real_decrement)
            rival_db = session_factory()
            try:
                OrderService(rival_db, lock_service).place_order(CartSource(Account(1)), CUSTOMER)
            finally:
                rival_db.close()
            return real_decrement(product_id, old_version, quantity)

        monkeypatch.setattr(loser.products, "decrement_stock", decrement_after_rival)

        with pytest.raises(InsufficientStock):
            loser.place_order(CartSource(Account(2)), CUSTOMER)

        assert stock_of(product.id) == 0
        assert order_count(db) == 1

    def test_version_conflict_is_retried(self, carts, orders, make_product, stock_of, monkeypatch):
        owner = Account(1)
        product = make_product(stock=5)
        carts.add_item(owner, product.id, 2)

        real_decrement = orders.products.decrement_stock
        calls = []

        def flaky(product_id, old_version, quantity):
            calls.append(old_version)
            if len(calls) == 1:
                return 0
            return real_decrement(product_id, old_version, quantity)

        monkeypatch.setattr(orders.products, "decrement_stock", flaky)

        orders.place_order(CartSource(owner), CUSTOMER)

        assert len(calls) == 2
        assert stock_of(product.id) == 3

    def test_persistent_conflict_gives_up(self, db, carts, orders, make_product, stock_of, monkeypatch):
        owner = Account(1)
        product = make_product(stock=5)
        carts.add_item(owner, product.id, 2)

        monkeypatch.setattr(orders.products, "decrement_stock", lambda *args: 0)

        with pytest.raises(Conflict) as exc_info:
            orders.place_order(CartSource(owner), CUSTOMER)

        assert exc_info.value.code == "STOCK_CONFLICT"
        assert stock_of(product.id) == 5
        assert order_count(db) == 0
        assert carts.list(owner)["summary"]["item_count"] == 2
