import pytest
from fastapi.testclient import TestClient

from storefront.auth import create_access_token
from storefront.database import get_db
from storefront.main import create_app
from storefront.models import Product


@pytest.fixture()
def client(session_factory, cache, events, dispatcher):
    app = create_app()
    app.state.cache = cache
    app.state.events = events
    app.state.dispatcher = dispatcher

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # no context manager: startup would build the real services
    return TestClient(app)


@pytest.fixture()
def customer_headers(catalog):
    token = create_access_token({"sub": catalog.customer, "role": "customer", "name": "Juan"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers():
    token = create_access_token({"sub": 1, "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


def _order_body(items, **overrides):
    body = {
        "customer_name": "Maria Santos",
        "phone": "09171234567",
        "address": "123 Rizal Street, Purok 4",
        "barangay": "San Isidro",
        "items": items,
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestOrderEndpoints:
    def test_guest_order(self, client, catalog, events, stock):
        resp = client.post("/orders", json=_order_body([{"product_id": catalog.hammer, "quantity": 2}]))

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "pending"
        assert data["total_amount"] == "500.00"
        assert data["order_number"].startswith("HW-")
        assert stock(Product, catalog.hammer) == 8
        assert events.events[0]["customer_id"] is None

    def test_customer_order_is_linked(self, client, catalog, customer_headers, events):
        resp = client.post(
            "/orders",
            json=_order_body([{"product_id": catalog.nails, "quantity": 1}]),
            headers=customer_headers,
        )

        assert resp.status_code == 201
        assert events.events[0]["customer_id"] == catalog.customer

    def test_bad_token_is_rejected_even_for_guest_checkout(self, client, catalog):
        resp = client.post(
            "/orders",
            json=_order_body([{"product_id": catalog.hammer, "quantity": 1}]),
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert resp.status_code == 401

    def test_oversell_is_a_conflict(self, client, catalog, stock):
        resp = client.post(
            "/orders",
            json=_order_body(
                [
                    {"product_id": catalog.cement, "quantity": 5},
                    {"product_id": catalog.hammer, "quantity": 1},
                ]
            ),
        )

        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["error"] == "INSUFFICIENT_STOCK"
        assert detail["errors"][0]["available"] == 1
        assert stock(Product, catalog.hammer) == 10

    def test_empty_order_is_bad_request(self, client, catalog):
        resp = client.post("/orders", json=_order_body([]))

        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "EMPTY_ORDER"

    def test_track(self, client, catalog):
        placed = client.post("/orders", json=_order_body([{"product_id": catalog.hammer, "quantity": 1}])).json()

        resp = client.get(f"/orders/track/{placed['order_number']}")
        missing = client.get("/orders/track/HW-19990101-0000")

        assert resp.status_code == 200
        assert resp.json()["items"][0]["product_name"] == "Claw Hammer"
        assert missing.status_code == 404

    def test_cart_validate(self, client, catalog):
        resp = client.post(
            "/cart/validate",
            json={"items": [{"product_id": catalog.hammer, "quantity": 1}, {"product_id": catalog.retired, "quantity": 1}]},
        )

        data = resp.json()
        assert resp.status_code == 200
        assert data["valid"] is False
        assert data["errors"][0]["code"] == "UNAVAILABLE"
        assert data["validated_items"][0]["unit_price"] == "250.00"


class TestAdminEndpoints:
    def _place(self, client, catalog):
        return client.post("/orders", json=_order_body([{"product_id": catalog.hammer, "quantity": 3}])).json()

    def _order_id(self, client, admin_headers):
        return client.get("/admin/orders", headers=admin_headers).json()["orders"][0]["id"]

    def test_requires_token(self, client):
        assert client.get("/admin/orders").status_code in (401, 403)

    def test_customer_token_is_forbidden(self, client, customer_headers):
        assert client.get("/admin/orders", headers=customer_headers).status_code == 403

    def test_status_update_and_cancel_restock(self, client, catalog, admin_headers, events, stock):
        self._place(client, catalog)
        order_id = self._order_id(client, admin_headers)

        accepted = client.patch(
            f"/admin/orders/{order_id}/status", json={"status": "accepted"}, headers=admin_headers
        )
        cancelled = client.patch(
            f"/admin/orders/{order_id}/status",
            json={"status": "cancelled", "message": "customer unreachable"},
            headers=admin_headers,
        )

        assert accepted.json()["status"] == "accepted"
        assert cancelled.json()["status"] == "cancelled"
        assert stock(Product, catalog.hammer) == 10
        assert events.events[-1]["actor_id"] == 1
        assert events.events[-1]["note"] == "customer unreachable"

        detail = client.get(f"/admin/orders/{order_id}", headers=admin_headers).json()
        assert [h["to_status"] for h in detail["status_history"]] == ["pending", "accepted", "cancelled"]

    def test_invalid_status(self, client, catalog, admin_headers):
        self._place(client, catalog)
        order_id = self._order_id(client, admin_headers)

        resp = client.patch(f"/admin/orders/{order_id}/status", json={"status": "frobnicate"}, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "INVALID_STATUS"
        assert "delivered" in resp.json()["detail"]["valid_statuses"]

    def test_unknown_order(self, client, admin_headers):
        resp = client.patch("/admin/orders/999/status", json={"status": "accepted"}, headers=admin_headers)

        assert resp.status_code == 404

    def test_list_filter_by_status(self, client, catalog, admin_headers):
        self._place(client, catalog)

        pending = client.get("/admin/orders", params={"status": "pending"}, headers=admin_headers).json()
        bogus = client.get("/admin/orders", params={"status": "lost"}, headers=admin_headers)

        assert pending["total"] == 1
        assert bogus.status_code == 400

    def test_custom_sms_and_stats(self, client, admin_headers):
        sent = client.post("/admin/sms", json={"destination": "09171234567", "message": "Store closed today"}, headers=admin_headers)
        stats = client.get("/admin/sms/stats", headers=admin_headers).json()

        assert sent.status_code == 202
        assert sent.json()["sent"] is True
        assert stats["total"] == 1
        assert stats["success_rate"] == "100.00%"


class TestCustomerEndpoints:
    def test_cancel_own_order(self, client, catalog, customer_headers, stock):
        placed = client.post(
            "/orders",
            json=_order_body([{"product_id": catalog.hammer, "quantity": 4}]),
            headers=customer_headers,
        ).json()

        mine = client.get("/customers/orders", headers=customer_headers).json()
        resp = client.post(
            f"/customers/orders/{placed['order_number']}/cancel",
            json={"reason": "ordered by mistake"},
            headers=customer_headers,
        )
        again = client.post(f"/customers/orders/{placed['order_number']}/cancel", headers=customer_headers)

        assert mine["total"] == 1
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert stock(Product, catalog.hammer) == 10
        assert again.status_code == 409

    def test_other_customers_order_is_hidden(self, client, catalog):
        placed = client.post("/orders", json=_order_body([{"product_id": catalog.hammer, "quantity": 1}])).json()
        stranger = create_access_token({"sub": 999, "role": "customer"})

        resp = client.get(
            f"/customers/orders/{placed['order_number']}",
            headers={"Authorization": f"Bearer {stranger}"},
        )

        assert resp.status_code == 404


class TestCatalogEndpoints:
    def test_public_reads(self, client, catalog):
        products = client.get("/products").json()
        category = client.get(f"/categories/{catalog.tools}").json()

        assert "Old Saw" not in [p["name"] for p in products]
        assert category["name"] == "Tools"

    def test_admin_stock_update(self, client, catalog, admin_headers):
        resp = client.patch(
            f"/admin/products/{catalog.cement}/stock", json={"stock_quantity": 40}, headers=admin_headers
        )

        assert resp.status_code == 200
        assert client.get(f"/products/{catalog.cement}").json()["stock_quantity"] == 40

    def test_category_in_use(self, client, catalog, admin_headers):
        resp = client.delete(f"/admin/categories/{catalog.building}", headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "CATEGORY_IN_USE"
