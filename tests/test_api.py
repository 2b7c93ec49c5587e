"""Tests for the storefront HTTP API."""

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import make_order, make_token, product_stock, run, seed_order, seed_product
from storefront import config
from storefront import main as storefront_main
from storefront.clients.document_store import DocumentStoreClient

CUSTOMER = {"Authorization": f"Bearer {make_token()}"}
OTHER_CUSTOMER = {"Authorization": f"Bearer {make_token('user-2', 'ravi@example.com')}"}
ADMIN = {"Authorization": f"Bearer {make_token('admin-1', 'ops@example.com', 'admin', name='Asha')}"}

ADDRESS = {
    "fullName": "Priya Sharma",
    "email": "priya@example.com",
    "phone": "555-0100",
    "addressLine1": "12 Park Street",
    "city": "Pune",
    "state": "MH",
    "postalCode": "411001",
    "country": "India",
}

CARD = {
    "type": "card",
    "cardholderName": "Priya Sharma",
    "cardNumber": "4111111111111234",
    "expiryMonth": "12",
    "expiryYear": "2030",
    "cvv": "123",
}


@pytest.fixture
def api_client(store, monkeypatch):
    """Storefront client wired to the in-process docstore."""
    monkeypatch.setattr(config, "PAYMENT_DELAY_SECONDS", 0)
    storefront_main.app.dependency_overrides[storefront_main.get_store] = lambda: store
    yield TestClient(storefront_main.app)
    storefront_main.app.dependency_overrides.clear()


def place_order(api_client, quantity=4):
    response = api_client.post("/cart/items", json={"productId": "1", "quantity": quantity}, headers=CUSTOMER)
    assert response.status_code == 201
    response = api_client.post(
        "/checkout", json={"shippingAddress": ADDRESS, "paymentMethod": CARD}, headers=CUSTOMER
    )
    assert response.status_code == 201
    return response.json()


class TestHealthAndAuth:
    def test_health(self, api_client):
        response = api_client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_requires_token(self, api_client):
        assert api_client.get("/cart").status_code in (401, 403)

    def test_rejects_bad_token(self, api_client):
        response = api_client.get("/cart", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_admin_routes_need_admin(self, api_client):
        response = api_client.get("/admin/orders", headers=CUSTOMER)
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin privileges required"


class TestCartApi:
    def test_add_and_read(self, api_client, store):
        seed_product(store, price=25.0, stock=10)

        response = api_client.post("/cart/items", json={"productId": "1", "quantity": 4}, headers=CUSTOMER)
        assert response.status_code == 201
        cart = response.json()
        assert cart["totalItems"] == 4
        assert cart["totalPrice"] == 100.0
        assert cart["items"][0]["ProductID"] == "1"
        assert cart["items"][0]["Product"]["title"] == "Desk Lamp"
        assert product_stock(store) == 6

        assert api_client.get("/cart", headers=OTHER_CUSTOMER).json()["items"] == []

    def test_insufficient_stock(self, api_client, store):
        seed_product(store, stock=1)
        response = api_client.post("/cart/items", json={"productId": "1", "quantity": 2}, headers=CUSTOMER)
        assert response.status_code == 409
        assert response.json()["available"] == 1

    def test_unknown_product(self, api_client):
        response = api_client.post("/cart/items", json={"productId": "77"}, headers=CUSTOMER)
        assert response.status_code == 404

    def test_update_remove_and_clear(self, api_client, store):
        seed_product(store, stock=10)
        cart = api_client.post("/cart/items", json={"productId": "1", "quantity": 2}, headers=CUSTOMER).json()
        item_id = cart["items"][0]["id"]

        cart = api_client.put(f"/cart/items/{item_id}", json={"quantity": 5}, headers=CUSTOMER).json()
        assert cart["totalItems"] == 5
        assert product_stock(store) == 5

        cart = api_client.delete(f"/cart/items/{item_id}", headers=CUSTOMER).json()
        assert cart["items"] == []
        assert product_stock(store) == 10

        api_client.post("/cart/items", json={"productId": "1", "quantity": 3}, headers=CUSTOMER)
        assert api_client.delete("/cart", headers=CUSTOMER).json()["totalItems"] == 0
        assert product_stock(store) == 7


class TestCheckoutApi:
    def test_checkout(self, api_client, store):
        seed_product(store, price=25.0, stock=10)
        order = place_order(api_client)

        assert order["orderNumber"].startswith("ORD-")
        assert order["orderStatus"] == "confirmed"
        assert order["total"] == 108.0
        assert order["paymentMethod"]["cardNumber"] == "**** **** **** 1234"
        assert "cvv" not in order["paymentMethod"]
        assert api_client.get("/cart", headers=CUSTOMER).json()["items"] == []

    def test_empty_cart(self, api_client):
        response = api_client.post(
            "/checkout", json={"shippingAddress": ADDRESS, "paymentMethod": {"type": "cod"}}, headers=CUSTOMER
        )
        assert response.status_code == 400

    def test_invalid_upi(self, api_client, store):
        seed_product(store)
        api_client.post("/cart/items", json={"productId": "1"}, headers=CUSTOMER)
        response = api_client.post(
            "/checkout",
            json={"shippingAddress": ADDRESS, "paymentMethod": {"type": "upi", "upiId": "priya@bank"}},
            headers=CUSTOMER,
        )
        assert response.status_code == 400
        assert "UPI" in response.json()["detail"]

    def test_failure_has_generic_message(self, api_client, store):
        seed_product(store)
        api_client.post("/cart/items", json={"productId": "1"}, headers=CUSTOMER)

        async def broken_create(collection, document):
            raise RuntimeError("disk full")

        store.create = broken_create
        response = api_client.post(
            "/checkout", json={"shippingAddress": ADDRESS, "paymentMethod": CARD}, headers=CUSTOMER
        )
        assert response.status_code == 502
        assert response.json()["detail"] == "Payment failed. Please try again."


class TestCustomerOrdersApi:
    def test_history_and_tracking(self, api_client, store):
        seed_product(store, stock=10)
        order = place_order(api_client, quantity=1)

        history = api_client.get("/orders", headers=CUSTOMER).json()
        assert [o["orderNumber"] for o in history] == [order["orderNumber"]]
        assert api_client.get("/orders", headers=OTHER_CUSTOMER).json() == []

        tracked = api_client.get(f"/orders/{order['orderNumber']}/tracking", headers=CUSTOMER)
        assert tracked.status_code == 200
        assert tracked.json()["id"] == order["id"]

        assert api_client.get(f"/orders/{order['orderNumber']}/tracking", headers=OTHER_CUSTOMER).status_code == 404

    def test_cancel(self, api_client, store):
        seed_product(store, stock=10)
        order = place_order(api_client, quantity=4)

        response = api_client.post(
            f"/orders/{order['id']}/cancel", json={"reason": "changed mind"}, headers=CUSTOMER
        )
        assert response.status_code == 200
        outcome = response.json()
        assert outcome["order"]["orderStatus"] == "cancelled"
        assert outcome["notificationsSent"] == 2
        assert product_stock(store) == 10

    def test_cancel_requires_reason(self, api_client, store):
        created = seed_order(store, make_order("confirmed"))
        response = api_client.post(f"/orders/{created.id}/cancel", json={"reason": ""}, headers=CUSTOMER)
        assert response.status_code == 422

    def test_cancel_after_shipping(self, api_client, store):
        created = seed_order(store, make_order("shipped"))
        response = api_client.post(f"/orders/{created.id}/cancel", json={"reason": "late"}, headers=CUSTOMER)
        assert response.status_code == 409

    def test_hide(self, api_client, store):
        created = seed_order(store, make_order("delivered"))

        assert api_client.post(f"/orders/{created.id}/hide", headers=OTHER_CUSTOMER).status_code == 404
        assert api_client.post(f"/orders/{created.id}/hide", headers=CUSTOMER).status_code == 200
        assert api_client.get("/orders", headers=CUSTOMER).json() == []
        assert len(api_client.get("/admin/orders", headers=ADMIN).json()) == 1


class TestAdminApi:
    def test_advance_status(self, api_client, store):
        created = seed_order(store, make_order("confirmed"))

        response = api_client.post(
            f"/admin/orders/{created.id}/status", json={"status": "processing", "notes": "Packed"}, headers=ADMIN
        )
        assert response.status_code == 200
        body = response.json()
        assert body["orderStatus"] == "processing"
        assert body["trackingHistory"][0]["updatedBy"] == "Asha"

    def test_invalid_transition(self, api_client, store):
        created = seed_order(store, make_order("shipped"))
        response = api_client.post(
            f"/admin/orders/{created.id}/status", json={"status": "processing"}, headers=ADMIN
        )
        assert response.status_code == 409
        assert response.json()["allowed"] == ["delivered"]

    def test_missing_order(self, api_client):
        response = api_client.post("/admin/orders/nope/status", json={"status": "shipped"}, headers=ADMIN)
        assert response.status_code == 404

    def test_notes(self, api_client, store):
        created = seed_order(store, make_order())
        response = api_client.put(f"/admin/orders/{created.id}/notes", json={"notes": "Fragile"}, headers=ADMIN)
        assert response.json()["processingNotes"] == "Fragile"

    def test_filters_and_statistics(self, api_client, store):
        seed_order(store, make_order("confirmed"))
        seed_order(store, make_order("shipped"))

        shipped = api_client.get("/admin/orders", params={"status": "shipped"}, headers=ADMIN).json()
        assert [o["orderStatus"] for o in shipped] == ["shipped"]

        stats = api_client.get("/admin/orders/statistics", headers=ADMIN).json()
        assert stats["total"] == 2
        assert stats["confirmed"] == 1

    def test_remove_and_hide(self, api_client, store):
        seed_product(store, stock=5)
        created = seed_order(store, make_order("processing"))

        response = api_client.post(
            f"/admin/orders/{created.id}/remove", json={"reason": "Supplier issue"}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["order"]["isArchived"] is True
        assert product_stock(store) == 8

        assert api_client.post(f"/admin/orders/{created.id}/hide", headers=ADMIN).status_code == 200
        assert api_client.get("/admin/orders", headers=ADMIN).json() == []

    def test_processing_locations(self, api_client, store):
        run(store.create("processingLocations", {"id": "loc-1", "name": "Central Warehouse", "city": "Mumbai"}))
        response = api_client.get("/admin/processing-locations", headers=ADMIN)
        assert [loc["name"] for loc in response.json()] == ["Central Warehouse"]

    def test_cleanup(self, api_client, store):
        stats = api_client.get("/admin/cleanup/stats", headers=ADMIN).json()
        assert stats["totalArchived"] == 0

        result = api_client.post("/admin/cleanup", headers=ADMIN).json()
        assert result["deletedCount"] == 0
        assert result["skipped"] is False


class TestNotificationsApi:
    def test_inboxes(self, api_client, store):
        created = seed_order(store, make_order("confirmed"))
        api_client.post(f"/orders/{created.id}/cancel", json={"reason": "changed mind"}, headers=CUSTOMER)

        customer_inbox = api_client.get("/notifications", headers=CUSTOMER).json()
        assert [n["type"] for n in customer_inbox] == ["order_refund_notification"]
        admin_inbox = api_client.get("/notifications", headers=ADMIN).json()
        assert [n["type"] for n in admin_inbox] == ["order_deleted_by_customer"]

        notification_id = admin_inbox[0]["id"]
        assert api_client.post(f"/notifications/{notification_id}/read", headers=CUSTOMER).status_code == 404
        response = api_client.post(f"/notifications/{notification_id}/read", headers=ADMIN)
        assert response.json()["read"] is True
        assert api_client.get("/notifications", params={"unread_only": True}, headers=ADMIN).json() == []


class TestStoreUnavailable:
    def test_returns_503(self, api_client):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        down = DocumentStoreClient(base_url="http://docstore", transport=httpx.MockTransport(refuse))
        storefront_main.app.dependency_overrides[storefront_main.get_store] = lambda: down

        response = api_client.get("/cart", headers=CUSTOMER)
        assert response.status_code == 503
        assert response.json()["detail"] == "Service communication error"
