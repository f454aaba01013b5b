"""Tests for the order creation workflow and the order writer."""

import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from storefront.core.errors import (
    CartUnavailable,
    EmptyCart,
    InvalidShippingAddress,
    OrderCreationFailed,
    OrderItemsCreationFailed,
)
from storefront.crud import cart_items as cart_crud
from storefront.crud import orders as orders_crud
from storefront.models.cart_item import CartItem
from storefront.models.order import Order
from storefront.models.order_item import OrderItem
from storefront.service.checkout import create_order_from_cart, validate_shipping_address
from storefront.service.pricing import PricingPolicy


async def count_rows(session_factory, model, *where):
    query = select(func.count()).select_from(model)
    if where:
        query = query.where(*where)
    async with session_factory() as session:
        return await session.scalar(query)


async def fail(*args, **kwargs):
    raise SQLAlchemyError("simulated database failure")


@pytest.fixture
def filled_cart(user_id, make_product, add_line):
    """Cart of 2 x 29.99 (size M) and 1 x 59.99."""

    async def _fill():
        shirt = await make_product("Linen Shirt", "29.99", stock=5)
        jacket = await make_product("Denim Jacket", "59.99", stock=2)
        await add_line(user_id, shirt, 2, size="M", color="blue")
        await add_line(user_id, jacket, 1)
        return shirt, jacket

    return _fill


class TestShippingAddress:
    def test_camel_case_kept(self, address):
        stored = validate_shipping_address(
            {**address, "addressLine2": "Apt 4"}
        )
        assert stored["fullName"] == "Jane Doe"
        assert stored["addressLine2"] == "Apt 4"
        assert "phone" not in stored

    def test_snake_case_accepted(self):
        stored = validate_shipping_address(
            {
                "full_name": "Jane Doe",
                "address_line1": "1 Market St",
                "city": "Springfield",
                "state": "IL",
                "postal_code": "62701",
            }
        )
        assert stored["postalCode"] == "62701"

    @pytest.mark.parametrize("field", ["fullName", "addressLine1", "city", "state", "postalCode"])
    def test_required_field_missing(self, address, field):
        address = {k: v for k, v in address.items() if k != field}
        with pytest.raises(InvalidShippingAddress):
            validate_shipping_address(address)

    def test_blank_field_rejected(self, address):
        with pytest.raises(InvalidShippingAddress):
            validate_shipping_address({**address, "fullName": "   "})

    @pytest.mark.parametrize("raw", [None, "1 Market St", ["a"]])
    def test_not_an_object(self, raw):
        with pytest.raises(InvalidShippingAddress):
            validate_shipping_address(raw)


class TestCreateOrderFromCart:
    async def test_success(self, address, db, session_factory, user_id, filled_cart):
        shirt, jacket = await filled_cart()

        order = await create_order_from_cart(db, user_id, address, "card")

        assert order.order_number.startswith("ORD-")
        assert order.user_id == user_id
        assert order.status == "paid"
        assert order.payment_status == "completed"
        assert order.payment_method == "card"
        assert order.currency == "USD"
        assert order.shipping_address["fullName"] == "Jane Doe"
        assert order.subtotal == Decimal("119.97")
        assert order.shipping_cost == Decimal("0.00")
        assert order.tax_amount == Decimal("9.60")
        assert order.total_amount == Decimal("129.57")
        assert order.estimated_delivery is not None

        assert len(order.items) == 2
        by_title = {i.product_title: i for i in order.items}
        assert by_title["Linen Shirt"].quantity == 2
        assert by_title["Linen Shirt"].selected_size == "M"
        assert by_title["Linen Shirt"].selected_color == "blue"
        assert by_title["Linen Shirt"].product_id == shirt.id
        assert by_title["Denim Jacket"].selected_size is None
        for item in order.items:
            assert item.total_price == item.quantity * item.unit_price
        assert sum(i.total_price for i in order.items) == order.subtotal

        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 0

    async def test_below_threshold_pays_shipping(self, address, db, user_id, make_product, add_line):
        shirt = await make_product("Linen Shirt", "29.99")
        await add_line(user_id, shirt, 2)

        order = await create_order_from_cart(db, user_id, address, None)

        assert order.subtotal == Decimal("59.98")
        assert order.shipping_cost == Decimal("12.00")
        assert order.tax_amount == Decimal("4.80")
        assert order.total_amount == Decimal("76.78")
        assert order.payment_method is None

    async def test_custom_policy(self, address, db, user_id, make_product, add_line):
        shirt = await make_product("Linen Shirt", "29.99")
        await add_line(user_id, shirt, 1)
        policy = PricingPolicy(
            free_shipping_threshold=Decimal("10"),
            flat_shipping_rate=Decimal("5"),
            tax_rate=Decimal("0"),
        )

        order = await create_order_from_cart(db, user_id, address, "card", policy)

        assert order.shipping_cost == Decimal("0.00")
        assert order.total_amount == Decimal("29.99")

    async def test_captured_price_is_used(self, address, db, user_id, make_product, add_line):
        shirt = await make_product("Linen Shirt", "35.00")
        await add_line(user_id, shirt, 1, unit_price="29.99")

        order = await create_order_from_cart(db, user_id, address, "card")

        assert order.items[0].unit_price == Decimal("29.99")
        assert order.subtotal == Decimal("29.99")

    async def test_empty_cart_writes_nothing(self, address, db, session_factory, user_id):
        with pytest.raises(EmptyCart) as exc:
            await create_order_from_cart(db, user_id, address, "card")

        assert exc.value.message == "Cart is empty"
        assert exc.value.status_code == 400
        assert await count_rows(session_factory, Order) == 0

    async def test_other_users_cart_not_used(self, address, db, session_factory, user_id, make_product, add_line):
        shirt = await make_product()
        await add_line(uuid.uuid4(), shirt, 1)

        with pytest.raises(EmptyCart):
            await create_order_from_cart(db, user_id, address, "card")
        assert await count_rows(session_factory, CartItem) == 1

    async def test_invalid_address_touches_nothing(self, address, db, session_factory, user_id, filled_cart, monkeypatch):
        await filled_cart()
        reads = []

        async def spy(*args, **kwargs):
            reads.append(args)
            return []

        monkeypatch.setattr(cart_crud, "get_cart_lines", spy)
        address = {k: v for k, v in address.items() if k != "fullName"}

        with pytest.raises(InvalidShippingAddress):
            await create_order_from_cart(db, user_id, address, "card")

        assert reads == []
        assert await count_rows(session_factory, Order) == 0
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 2

    async def test_cart_read_failure_reported_as_empty(self, address, db, session_factory, user_id, filled_cart, monkeypatch):
        await filled_cart()
        monkeypatch.setattr(cart_crud, "get_cart_lines", fail)

        with pytest.raises(CartUnavailable) as exc:
            await create_order_from_cart(db, user_id, address, "card")

        assert exc.value.message == "Cart is empty"
        assert exc.value.status_code == 400
        assert await count_rows(session_factory, Order) == 0

    async def test_order_insert_failure(self, address, db, session_factory, user_id, filled_cart, monkeypatch):
        await filled_cart()
        monkeypatch.setattr(orders_crud, "insert_order", fail)

        with pytest.raises(OrderCreationFailed) as exc:
            await create_order_from_cart(db, user_id, address, "card")

        assert exc.value.status_code == 500
        assert exc.value.message == "Failed to create order"
        assert await count_rows(session_factory, Order) == 0
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 2

    async def test_items_failure_removes_order_and_keeps_cart(
        self, address, db, session_factory, user_id, filled_cart, monkeypatch
    ):
        await filled_cart()
        created = []
        real_insert_order = orders_crud.insert_order

        async def tracking_insert_order(*args, **kwargs):
            order = await real_insert_order(*args, **kwargs)
            created.append(order.id)
            return order

        monkeypatch.setattr(orders_crud, "insert_order", tracking_insert_order)
        monkeypatch.setattr(orders_crud, "insert_order_items", fail)

        with pytest.raises(OrderItemsCreationFailed) as exc:
            await create_order_from_cart(db, user_id, address, "card")

        assert exc.value.message == "Failed to create order items"
        assert len(created) == 1
        async with session_factory() as session:
            assert await orders_crud.get_order(session, created[0], user_id) is None
        assert await count_rows(session_factory, Order) == 0
        assert await count_rows(session_factory, OrderItem) == 0
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 2

    async def test_failed_compensation_still_reports_items_failure(
        self, address, db, session_factory, user_id, filled_cart, monkeypatch
    ):
        await filled_cart()
        monkeypatch.setattr(orders_crud, "insert_order_items", fail)
        monkeypatch.setattr(orders_crud, "delete_order", fail)

        with pytest.raises(OrderItemsCreationFailed):
            await create_order_from_cart(db, user_id, address, "card")

        # заказ без позиций остаётся, корзина не тронута
        assert await count_rows(session_factory, Order) == 1
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 2

    async def test_cart_clear_failure_does_not_fail_order(
        self, address, db, session_factory, user_id, filled_cart, monkeypatch
    ):
        await filled_cart()
        monkeypatch.setattr(cart_crud, "clear_cart", fail)

        order = await create_order_from_cart(db, user_id, address, "card")

        assert len(order.items) == 2
        assert await count_rows(session_factory, Order) == 1
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 2

    async def test_order_reread_failure_returns_created_order(
        self, address, db, session_factory, user_id, filled_cart, monkeypatch
    ):
        await filled_cart()
        monkeypatch.setattr(orders_crud, "get_order", fail)

        order = await create_order_from_cart(db, user_id, address, "card")

        assert order.status == "paid"
        assert order.total_amount == Decimal("129.57")
        assert len(order.items) == 2
        assert await count_rows(session_factory, Order) == 1
        assert await count_rows(session_factory, CartItem, CartItem.user_id == user_id) == 0
        async with session_factory() as session:
            stored = set((await session.execute(select(OrderItem.id))).scalars().all())
        assert {item.id for item in order.items} == stored

    async def test_order_number_from_generator(self, address, db, user_id, filled_cart, monkeypatch):
        await filled_cart()

        async def generator(session):
            return "ORD-20261019-000042"

        monkeypatch.setattr(orders_crud, "generate_order_number", generator)

        order = await create_order_from_cart(db, user_id, address, "card")

        assert order.order_number == "ORD-20261019-000042"

    async def test_concurrent_checkouts_create_one_order(
        self, address, session_factory, user_id, filled_cart
    ):
        await filled_cart()

        async def checkout():
            async with session_factory() as session:
                return await create_order_from_cart(session, user_id, address, "card")

        results = await asyncio.gather(checkout(), checkout(), return_exceptions=True)

        orders = [r for r in results if isinstance(r, Order)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(orders) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], EmptyCart)
        assert await count_rows(session_factory, Order) == 1


class FakeSession:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.rolled_back = False

    async def scalar(self, statement):
        if self.error:
            raise self.error
        return self.result

    async def rollback(self):
        self.rolled_back = True


class TestGenerateOrderNumber:
    async def test_uses_database_function(self):
        session = FakeSession(result="ORD-20261019-000001")
        assert await orders_crud.generate_order_number(session) == "ORD-20261019-000001"

    async def test_falls_back_when_function_fails(self):
        session = FakeSession(error=OperationalError("SELECT", {}, Exception("no such function")))

        number = await orders_crud.generate_order_number(session)

        assert session.rolled_back
        assert number.startswith("ORD-")
        assert number[4:].isdigit()

    async def test_falls_back_on_empty_result(self):
        number = await orders_crud.generate_order_number(FakeSession(result=None))
        assert number.startswith("ORD-")
        assert number[4:].isdigit()

    async def test_sqlite_has_no_generator(self, db):
        number = await orders_crud.generate_order_number(db)
        assert number[4:].isdigit()


class TestOrderReads:
    async def test_get_order_scoped_to_owner(self, address, db, session_factory, user_id, filled_cart):
        await filled_cart()
        order = await create_order_from_cart(db, user_id, address, "card")

        async with session_factory() as session:
            assert (await orders_crud.get_order(session, order.id, user_id)).id == order.id
            assert await orders_crud.get_order(session, order.id, uuid.uuid4()) is None

    async def test_delete_order(self, address, db, session_factory, user_id, filled_cart):
        await filled_cart()
        order = await create_order_from_cart(db, user_id, address, "card")

        async with session_factory() as session:
            assert await orders_crud.delete_order(session, order.id) is True
            assert await orders_crud.delete_order(session, order.id) is False
        assert await count_rows(session_factory, OrderItem) == 0
