from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import Conflict, InsufficientStock, InvalidInput, NotFound, StorageFailure
from storefront.domain.owner import Account, Anonymous
from storefront.repos.cart_repo import CartRepo
from storefront.services.cart_service import CartService


@pytest.fixture
def service(db, lock_service):
    return CartService(db=db, lock_service=lock_service)


def rows_for(db, owner):
    return CartRepo(db).list_all(owner)


class TestAddItem:
    def test_repeated_add_merges_into_one_row(self, db, service, make_product):
        owner = Anonymous("sess-1")
        product = make_product(stock=50)

        first = service.add_item(owner, product.id, 2)
        second = service.add_item(owner, product.id, 3)

        rows = rows_for(db, owner)
        assert len(rows) == 1
        assert rows[0].quantity == 5
        assert first["action"] == "added"
        assert second["action"] == "updated"
        assert second["cart_item_id"] == first["cart_item_id"]

    def test_add_clamps_to_stock(self, db, service, make_product):
        owner = Account(1)
        product = make_product(stock=4)

        service.add_item(owner, product.id, 3)
        result = service.add_item(owner, product.id, 3)

        assert result["clamped"] is True
        assert result["quantity"] == 4
        assert result["requested_quantity"] == 6
        assert rows_for(db, owner)[0].quantity == 4

    def test_first_add_clamps_to_stock(self, db, service, make_product):
        owner = Account(1)
        product = make_product(stock=2)

        result = service.add_item(owner, product.id, 5)

        assert result["quantity"] == 2
        assert result["clamped"] is True

    def test_unmanaged_stock_is_never_clamped(self, db, service, make_product):
        owner = Account(1)
        product = make_product(stock=0, manage_stock=False)

        result = service.add_item(owner, product.id, 9)

        assert result["quantity"] == 9
        assert result["clamped"] is False

    def test_out_of_stock(self, db, service, make_product):
        product = make_product(name="Monitor", stock=0)

        with pytest.raises(InsufficientStock) as exc_info:
            service.add_item(Account(1), product.id, 1)

        assert exc_info.value.product_id == product.id
        assert rows_for(db, Account(1)) == []

    @pytest.mark.parametrize("quantity", [0, -1, None])
    def test_invalid_quantity_does_not_touch_storage(self, service, redis_client, quantity):
        with pytest.raises(InvalidInput) as exc_info:
            service.add_item(Account(1), 1, quantity)
        assert exc_info.value.code == "INVALID_QUANTITY"
        redis_client.set.assert_not_called()

    def test_unknown_product(self, service):
        with pytest.raises(NotFound):
            service.add_item(Account(1), 999, 1)

    def test_inactive_product(self, service, make_product):
        product = make_product(status="inactive")
        with pytest.raises(InvalidInput):
            service.add_item(Account(1), product.id, 1)

    def test_mutation_takes_owner_lock(self, service, redis_client, make_product):
        product = make_product()

        service.add_item(Account(42), product.id, 1)

        key = redis_client.set.call_args.kwargs["name"]
        assert key == "cart:account:42:lock"
        assert redis_client.set.call_args.kwargs["nx"] is True
        redis_client.eval.assert_called_once()

    def test_busy_owner_lock_is_conflict(self, db, service, redis_client, make_product):
        product = make_product()
        redis_client.set.return_value = False

        with pytest.raises(Conflict) as exc_info:
            service.add_item(Account(1), product.id, 1)

        assert exc_info.value.code == "CART_BUSY"
        assert rows_for(db, Account(1)) == []

    def test_lost_insert_race_becomes_increment(self, db, service, make_product, monkeypatch):
        owner = Anonymous("sess-race")
        product = make_product(stock=50)
        service.add_item(owner, product.id, 2)

        # first lookup misses the row, as if a concurrent request inserted it meanwhile
        real_lookup = service.repo.get_by_product
        calls = {"n": 0}

        def flaky_lookup(o, product_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_lookup(o, product_id)

        monkeypatch.setattr(service.repo, "get_by_product", flaky_lookup)

        result = service.add_item(owner, product.id, 3)

        rows = rows_for(db, owner)
        assert len(rows) == 1
        assert rows[0].quantity == 5
        assert result["action"] == "updated"
        assert calls["n"] == 2


class TestUpdateAndRemove:
    def test_update_quantity(self, db, service, make_product):
        owner = Account(1)
        product = make_product(stock=10)
        item_id = service.add_item(owner, product.id, 1)["cart_item_id"]

        result = service.update_quantity(owner, item_id, 6)

        assert result["quantity"] == 6
        assert rows_for(db, owner)[0].quantity == 6

    def test_update_clamps_to_stock(self, db, service, make_product):
        owner = Account(1)
        product = make_product(stock=3)
        item_id = service.add_item(owner, product.id, 1)["cart_item_id"]

        result = service.update_quantity(owner, item_id, 8)

        assert result["quantity"] == 3
        assert result["clamped"] is True

    def test_update_to_zero_removes(self, db, service, make_product):
        owner = Account(1)
        product = make_product()
        item_id = service.add_item(owner, product.id, 2)["cart_item_id"]

        result = service.update_quantity(owner, item_id, 0)

        assert result["removed"] is True
        assert rows_for(db, owner) == []

    def test_update_negative_is_invalid(self, service):
        with pytest.raises(InvalidInput) as exc_info:
            service.update_quantity(Account(1), 1, -2)
        assert exc_info.value.message == "Quantity must not be negative"

    def test_update_of_foreign_item_is_not_found(self, db, service, make_product):
        product = make_product()
        item_id = service.add_item(Account(1), product.id, 2)["cart_item_id"]

        with pytest.raises(NotFound):
            service.update_quantity(Account(2), item_id, 5)
        assert rows_for(db, Account(1))[0].quantity == 2

    def test_remove_is_idempotent(self, db, service, make_product):
        owner = Anonymous("sess-1")
        product = make_product()
        item_id = service.add_item(owner, product.id, 1)["cart_item_id"]

        assert service.remove_item(owner, item_id)["removed"] is True
        assert service.remove_item(owner, item_id)["removed"] is False
        assert service.remove_item(owner, 12345)["removed"] is False

    def test_remove_does_not_touch_other_owner(self, db, service, make_product):
        product = make_product()
        item_id = service.add_item(Account(1), product.id, 1)["cart_item_id"]

        service.remove_item(Account(2), item_id)

        assert len(rows_for(db, Account(1))) == 1

    def test_clear(self, db, service, make_product):
        owner = Anonymous("sess-1")
        for _ in range(3):
            service.add_item(owner, make_product().id, 1)
        other = make_product()
        service.add_item(Account(9), other.id, 1)

        assert service.clear(owner) == 3
        assert rows_for(db, owner) == []
        assert len(rows_for(db, Account(9))) == 1


class TestList:
    def test_summary_uses_effective_price(self, service, make_product):
        owner = Account(1)
        keyboard = make_product(name="Keyboard", price="199.99")
        mouse = make_product(name="Mouse", price="49.50", sale_price="39.90")
        service.add_item(owner, keyboard.id, 1)
        service.add_item(owner, mouse.id, 2)

        cart = service.list(owner)

        assert cart["summary"]["item_count"] == 3
        assert cart["summary"]["subtotal"] == Decimal("279.79")
        mouse_line = next(i for i in cart["items"] if i["product_id"] == mouse.id)
        assert mouse_line["unit_price"] == Decimal("39.90")
        assert mouse_line["line_total"] == Decimal("79.80")

    def test_most_recent_first(self, service, make_product):
        owner = Account(1)
        products = [make_product() for _ in range(3)]
        for product in products:
            service.add_item(owner, product.id, 1)

        listed = [i["product_id"] for i in service.list(owner)["items"]]

        assert listed == [p.id for p in reversed(products)]

    def test_inactive_product_is_hidden_not_deleted(self, db, service, make_product):
        owner = Account(1)
        visible = make_product()
        hidden = make_product()
        service.add_item(owner, visible.id, 1)
        service.add_item(owner, hidden.id, 1)

        hidden.status = "inactive"
        db.commit()

        cart = service.list(owner)
        assert [i["product_id"] for i in cart["items"]] == [visible.id]
        assert service.count(owner) == 1
        assert len(rows_for(db, owner)) == 2

        hidden.status = "active"
        db.commit()
        assert len(service.list(owner)["items"]) == 2

    def test_owners_are_partitioned(self, service, make_product):
        product = make_product()
        service.add_item(Anonymous("1"), product.id, 1)
        service.add_item(Account(1), product.id, 4)

        assert service.list(Anonymous("1"))["summary"]["item_count"] == 1
        assert service.list(Account(1))["summary"]["item_count"] == 4

    def test_empty_cart(self, service):
        cart = service.list(Anonymous("nobody"))
        assert cart["items"] == []
        assert cart["summary"] == {"item_count": 0, "subtotal": Decimal("0.00")}


def test_single_owner_check_constraint(db, make_product):
    product = make_product()
    db.add(CartItemModel(product_id=product.id, quantity=1, session_id="s", user_id=1))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()
    assert db.execute(select(func.count(CartItemModel.id))).scalar_one() == 0


class TestStorageFailures:
    @pytest.mark.parametrize(
        "error, retryable",
        [
            (PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached"), True),
            (DisconnectionError("connection invalidated"), True),
            (OperationalError("SELECT", {}, Exception("server closed the connection")), True),
            (ProgrammingError("SELECT", {}, Exception("syntax error")), False),
        ],
    )
    def test_add_reports_storage_failure(self, db, service, redis_client, make_product, monkeypatch, error, retryable):
        product = make_product()

        def broken(owner, product_id):
            raise error

        monkeypatch.setattr(service.repo, "get_by_product", broken)

        with pytest.raises(StorageFailure) as exc_info:
            service.add_item(Account(1), product.id, 1)

        assert exc_info.value.retryable is retryable
        assert exc_info.value.to_dict()["retryable"] is retryable
        redis_client.eval.assert_called_once()

    def test_list_reports_storage_failure(self, service, monkeypatch):
        def broken(owner):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(service.repo, "list_visible", broken)

        with pytest.raises(StorageFailure) as exc_info:
            service.list(Account(1))
        assert exc_info.value.retryable is True

    def test_count_reports_storage_failure(self, service, monkeypatch):
        def broken(owner):
            raise PoolTimeoutError("QueuePool limit reached")

        monkeypatch.setattr(service.repo, "count_visible", broken)

        with pytest.raises(StorageFailure):
            service.count(Account(1))

    def test_catalog_read_in_add_reports_storage_failure(self, service, redis_client, monkeypatch):
        def broken(product_id):
            raise OperationalError("SELECT", {}, Exception("could not connect"))

        monkeypatch.setattr(service.catalog.repo, "get_product", broken)

        with pytest.raises(StorageFailure):
            service.add_item(Account(1), 1, 1)
        redis_client.set.assert_not_called()
