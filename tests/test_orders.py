import datetime as dt
import re
import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront import cache as cache_keys
from storefront import orders
from storefront.errors import EmptyOrderError, OrderCreationError, OrderNotFoundError
from storefront.models import Order, OrderItem, OrderStatusHistory, Product, ProductVariant
from storefront.orders import CustomerInfo, create_order, generate_order_number


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


class TestOrderNumber:
    def test_format(self):
        number = generate_order_number()

        assert re.fullmatch(r"HW-\d{8}-\d{4}", number)

    def test_uses_given_date(self):
        assert generate_order_number(dt.date(2024, 3, 9)).startswith("HW-20240309-")


class TestCreateOrder:
    def test_places_order_and_decrements_stock(self, db, catalog, customer_info, cache, events, stock):
        order = create_order(
            db,
            customer_info,
            [
                {"product_id": catalog.hammer, "quantity": 2},
                {"product_id": catalog.nails, "quantity": 5},
            ],
            cache=cache,
            events=events,
        )

        assert order.status == "pending"
        assert order.total_amount == Decimal("507.50")
        assert order.phone == "09171234567"
        assert [i.quantity for i in order.items] == [2, 5]
        assert stock(Product, catalog.hammer) == 8
        assert stock(Product, catalog.nails) == 995

    def test_initial_history_entry(self, db, catalog, customer_info):
        guest = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])
        member = create_order(
            db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}], customer_id=catalog.customer
        )

        first = guest.status_history[0]
        assert first.from_status is None
        assert first.to_status == "pending"
        assert first.note == "Order placed by guest customer"
        assert member.status_history[0].note == "Order placed by registered customer"

    def test_total_is_sum_of_subtotals(self, db, catalog, customer_info):
        order = create_order(
            db,
            customer_info,
            [
                {"product_id": catalog.cement, "quantity": 1},
                {"product_id": catalog.nails, "quantity": 3},
                {"product_id": catalog.drill, "variant_id": catalog.drill_18v, "quantity": 1},
            ],
        )

        assert order.total_amount == sum(i.subtotal for i in order.items)
        for item in order.items:
            assert item.subtotal == item.unit_price * item.quantity

    def test_total_survives_price_edit(self, db, catalog, customer_info):
        order = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 2}])

        db.get(Product, catalog.hammer).price = Decimal("999.00")
        db.commit()

        db.expire_all()
        reloaded = db.get(Order, order.id)
        assert reloaded.total_amount == Decimal("500.00")
        assert reloaded.items[0].unit_price == Decimal("250.00")

    def test_variant_line_draws_variant_stock(self, db, catalog, customer_info, stock):
        order = create_order(
            db,
            customer_info,
            [{"product_id": catalog.drill, "variant_id": catalog.drill_18v, "quantity": 2}],
        )

        item = order.items[0]
        assert item.variant_name == "18V"
        assert item.unit_price == Decimal("2500.00")
        assert stock(ProductVariant, catalog.drill_18v) == 1
        assert stock(Product, catalog.drill) == 0

    def test_empty_order_is_an_input_error(self, db, catalog, customer_info):
        with pytest.raises(EmptyOrderError) as exc:
            create_order(db, customer_info, [])

        assert exc.value.kind == "input"
        assert _count(db, Order) == 0

    def test_oversell_rejects_whole_order(self, db, catalog, customer_info, events, stock):
        with pytest.raises(OrderCreationError) as exc:
            create_order(
                db,
                customer_info,
                [
                    {"product_id": catalog.hammer, "quantity": 1},
                    {"product_id": catalog.cement, "quantity": 2},
                ],
                events=events,
            )

        err = exc.value
        assert err.code == "INSUFFICIENT_STOCK"
        assert err.kind == "conflict"
        assert err.line_errors[0]["requested"] == 2
        assert err.line_errors[0]["available"] == 1
        assert stock(Product, catalog.hammer) == 10
        assert stock(Product, catalog.cement) == 1
        assert _count(db, Order) == 0
        assert _count(db, OrderItem) == 0
        assert _count(db, OrderStatusHistory) == 0
        assert events.events == []

    def test_every_failing_line_is_reported(self, db, catalog, customer_info):
        with pytest.raises(OrderCreationError) as exc:
            create_order(
                db,
                customer_info,
                [
                    {"product_id": catalog.retired, "quantity": 1},
                    {"product_id": catalog.hammer, "quantity": 1},
                    {"product_id": 4242, "quantity": 1},
                ],
            )

        assert [e["code"] for e in exc.value.line_errors] == ["UNAVAILABLE", "NOT_FOUND"]
        assert [e["index"] for e in exc.value.line_errors] == [0, 2]

    def test_non_positive_quantity_is_an_input_error(self, db, catalog, customer_info):
        with pytest.raises(OrderCreationError) as exc:
            create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": -1}])

        assert exc.value.code == "INVALID_QUANTITY"
        assert exc.value.kind == "input"

    def test_stock_never_goes_negative_across_orders(self, db, catalog, customer_info, stock):
        placed = 0
        for _ in range(4):
            try:
                create_order(db, customer_info, [{"product_id": catalog.drill, "variant_id": catalog.drill_18v, "quantity": 1}])
                placed += 1
            except OrderCreationError:
                pass

        assert placed == 3
        assert stock(ProductVariant, catalog.drill_18v) == 0

    def test_invalidates_catalog_cache(self, db, catalog, customer_info, cache):
        cache.set(cache_keys.ALL_PRODUCTS, [{"id": catalog.hammer}])
        cache.set(cache_keys.product_key(catalog.hammer), {"id": catalog.hammer})
        cache.set(cache_keys.ALL_CATEGORIES, [])
        cache.set(cache_keys.response_key("/products?page=1"), {})

        create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}], cache=cache)

        assert cache.keys() == []

    def test_emits_created_event_after_commit(self, db, catalog, customer_info, events):
        order = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 3}], events=events)

        [event] = events.events
        assert event["event"] == "order.created"
        assert event["order_number"] == order.order_number
        assert event["total_amount"] == "750.00"
        assert event["items"] == [{"product_id": catalog.hammer, "variant_id": None, "quantity": 3}]

    def test_broken_event_queue_does_not_fail_the_order(self, db, catalog, customer_info):
        class Broken:
            def publish(self, event):
                raise RuntimeError("broker down")

        order = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}], events=Broken())

        assert order.id is not None
        assert _count(db, Order) == 1

    def test_order_number_collision_is_retried(self, db, catalog, customer_info, monkeypatch):
        first = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])
        numbers = iter([first.order_number, "HW-20240101-0001"])
        monkeypatch.setattr(orders, "generate_order_number", lambda today=None: next(numbers))

        second = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])

        assert second.order_number == "HW-20240101-0001"
        assert _count(db, Order) == 2
        assert _count(db, OrderStatusHistory) == 2


class TestConcurrentOrders:
    def test_last_unit_has_exactly_one_winner(self, session_factory, catalog, stock):
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def place(name):
            info = CustomerInfo(
                customer_name=name,
                phone="09181234567",
                address="45 Mabini Avenue",
                barangay="Poblacion",
            )
            with session_factory() as session:
                barrier.wait()
                try:
                    create_order(session, info, [{"product_id": catalog.cement, "quantity": 1}])
                    outcome = "placed"
                except OrderCreationError as e:
                    outcome = e.code
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=place, args=(n,)) for n in ("Ana", "Ben")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(results) == ["INSUFFICIENT_STOCK", "placed"]
        assert stock(Product, catalog.cement) == 0


class TestOrderReads:
    def test_track_by_number(self, db, catalog, customer_info):
        order = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])

        assert orders.track_order(db, order.order_number).id == order.id

    def test_track_unknown_number(self, db, catalog):
        with pytest.raises(OrderNotFoundError):
            orders.track_order(db, "HW-19990101-0000")

    def test_list_filters_and_counts(self, db, catalog, customer_info):
        create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])
        other = CustomerInfo(
            customer_name="Pedro Reyes",
            phone="09281234567",
            address="7 Luna Street",
            barangay="Bagong Silang",
        )
        create_order(db, other, [{"product_id": catalog.nails, "quantity": 1}], customer_id=catalog.customer)

        rows, total = orders.list_orders(db, search="pedro")
        assert total == 1
        assert rows[0].customer_name == "Pedro Reyes"

        rows, total = orders.list_orders(db, status="pending", limit=1)
        assert total == 2
        assert len(rows) == 1

        rows, total = orders.list_customer_orders(db, catalog.customer)
        assert total == 1

    def test_customer_cannot_read_someone_elses_order(self, db, catalog, customer_info):
        order = create_order(db, customer_info, [{"product_id": catalog.hammer, "quantity": 1}])

        with pytest.raises(OrderNotFoundError):
            orders.get_customer_order(db, order.order_number, catalog.customer)
