"""
API Endpoint Tests

Tests for:
- Checkout endpoint (COD, ONLINE, validation and stock errors)
- Authentication and admin authorization
- Order reads, cancellation and tracking routes
- Payment callback redirects and expired checkout release
- Health endpoints and request id propagation
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

USER_ID = "user-1"


@pytest.fixture
def order_payload():
    return {
        "shipping_address": {
            "full_name": "Asha Verma",
            "address_line1": "12 MG Road",
            "city": "Pune",
            "state": "Maharashtra",
            "postal_code": "411001",
            "phone": "9876543210",
        },
        "payment_method": "COD",
    }


@pytest.fixture
def placed_order(client, fill_cart, user_headers, order_payload):
    """Place a COD order through the API and return its JSON."""
    fill_cart([("PROD-KIBBLE", 2)])
    response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)
    assert response.status_code == 201
    return response.json()["data"]


class TestCreateOrderEndpoint:
    """Tests for POST /api/v1/orders"""

    def test_cod_order_created(self, client, store, fill_cart, user_headers, order_payload):
        fill_cart([("PROD-KIBBLE", 2)])

        response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order created successfully"
        assert body["data"]["order_status"] == "Processing"
        assert body["data"]["payment_method"] == "COD"
        assert body["data"]["total_amount"] == 93.0
        assert store.products["PROD-KIBBLE"].stock == 8

    def test_online_returns_payment_url(self, client, fill_cart, user_headers, order_payload):
        fill_cart([("PROD-COLLAR", 1)])
        order_payload["payment_method"] = "ONLINE"

        response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["payment_url"] == "https://testpay.easebuzz.in/pay/tok_abc123"
        assert data["temp_order_id"].startswith("TEMP-")
        assert data["amount"] == "32.50"

    def test_requires_token(self, client, order_payload):
        response = client.post("/api/v1/orders", json=order_payload)

        assert response.status_code == 401

    def test_validation_error_envelope(self, client, user_headers, order_payload):
        del order_payload["shipping_address"]["city"]

        response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert any(e["field"] == "shipping_address.city" for e in body["error"]["details"]["errors"])

    def test_invalid_payment_method(self, client, fill_cart, user_headers, order_payload):
        fill_cart([("PROD-KIBBLE", 1)])
        order_payload["payment_method"] = "CARD"

        response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_out_of_stock(self, client, store, fill_cart, user_headers, order_payload):
        fill_cart([("PROD-COLLAR", 9), ("PROD-KIBBLE", 1)])

        response = client.post("/api/v1/orders", json=order_payload, headers=user_headers)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "OUT_OF_STOCK"
        assert [i["product_id"] for i in error["details"]["out_of_stock_items"]] == ["PROD-COLLAR"]
        assert store.products["PROD-KIBBLE"].stock == 10


class TestOrderReadEndpoints:
    """Tests for order reads"""

    def test_my_orders(self, client, placed_order, user_headers, other_user_headers):
        mine = client.get("/api/v1/orders/me", headers=user_headers).json()["data"]
        theirs = client.get("/api/v1/orders/me", headers=other_user_headers).json()["data"]

        assert mine["total"] == 1
        assert mine["orders"][0]["order_id"] == placed_order["order_id"]
        assert theirs["total"] == 0

    def test_my_orders_status_filter(self, client, placed_order, user_headers):
        response = client.get("/api/v1/orders/me", params={"status": "Shipped"}, headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["orders"] == []

    def test_limit_is_bounded(self, client, user_headers):
        response = client.get("/api/v1/orders/me", params={"limit": 500}, headers=user_headers)

        assert response.status_code == 400

    def test_get_order_owner_and_other(self, client, placed_order, user_headers, other_user_headers):
        path = f"/api/v1/orders/{placed_order['order_id']}"

        assert client.get(path, headers=user_headers).status_code == 200
        response = client.get(path, headers=other_user_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_tracking_lookup(self, client, placed_order, user_headers):
        response = client.get(f"/api/v1/orders/tracking/{placed_order['tracking_number']}", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["order_id"] == placed_order["order_id"]

    def test_tracking_lookup_bad_format(self, client, user_headers):
        response = client.get("/api/v1/orders/tracking/nope", headers=user_headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid tracking number format"


class TestOrderWriteEndpoints:
    """Tests for cancellation, tracking and admin updates"""

    def test_cancel(self, client, store, placed_order, user_headers):
        response = client.patch(
            f"/api/v1/orders/{placed_order['order_id']}/cancel",
            json={"reason": "Ordered by mistake", "notes": "Duplicate"},
            headers=user_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order_status"] == "Cancelled"
        assert data["cancel_details"]["reason"] == "Ordered by mistake"
        assert store.products["PROD-KIBBLE"].stock == 10

    def test_cancel_notes_too_long(self, client, placed_order, user_headers):
        response = client.patch(
            f"/api/v1/orders/{placed_order['order_id']}/cancel",
            json={"reason": "Other", "notes": "x" * 501},
            headers=user_headers,
        )

        assert response.status_code == 400

    def test_cancel_delivered_is_rejected(self, client, placed_order, user_headers, admin_headers):
        client.patch(
            f"/api/v1/orders/status/{placed_order['order_id']}", json={"status": "Delivered"}, headers=admin_headers
        )

        response = client.patch(
            f"/api/v1/orders/{placed_order['order_id']}/cancel", json={"reason": "Other"}, headers=user_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ORDER_TRANSITION"

    def test_regenerate_tracking(self, client, placed_order, user_headers):
        response = client.patch(f"/api/v1/orders/{placed_order['order_id']}/tracking", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["data"]["tracking_number"] != placed_order["tracking_number"]

    def test_admin_routes_forbidden_for_customers(self, client, placed_order, user_headers):
        order_id = placed_order["order_id"]

        assert client.get("/api/v1/orders", headers=user_headers).status_code == 403
        assert client.patch(
            f"/api/v1/orders/status/{order_id}", json={"status": "Shipped"}, headers=user_headers
        ).status_code == 403
        assert client.patch(
            f"/api/v1/orders/payment-status/{order_id}", json={"payment_status": "Paid"}, headers=user_headers
        ).status_code == 403

    def test_admin_updates(self, client, placed_order, admin_headers):
        order_id = placed_order["order_id"]

        shipped = client.patch(
            f"/api/v1/orders/status/{order_id}",
            json={"status": "Shipped", "delivery_date": "2026-11-01T09:30:00Z"},
            headers=admin_headers,
        )
        paid = client.patch(
            f"/api/v1/orders/payment-status/{order_id}", json={"payment_status": "Paid"}, headers=admin_headers
        )
        listing = client.get("/api/v1/orders", params={"user_id": USER_ID}, headers=admin_headers)

        assert shipped.json()["data"]["delivery_date"] == "2026-11-01T09:30:00+00:00"
        assert paid.json()["data"]["payment_status"] == "Paid"
        assert listing.json()["data"]["orders"][0]["version"] == 3

    def test_admin_updates_with_storefront_keys(self, client, placed_order, admin_headers):
        response = client.patch(
            f"/api/v1/orders/status/{placed_order['order_id']}",
            json={"orderStatus": "Shipped", "deliveryDate": "2026-11-01T09:30:00Z"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order_status"] == "Shipped"
        assert data["delivery_date"] == "2026-11-01T09:30:00+00:00"

    def test_cancelled_order_cannot_be_reopened(self, client, store, placed_order, user_headers, admin_headers):
        order_id = placed_order["order_id"]
        client.patch(f"/api/v1/orders/{order_id}/cancel", json={"reason": "Other"}, headers=user_headers)

        response = client.patch(
            f"/api/v1/orders/status/{order_id}", json={"orderStatus": "Processing"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ORDER_TRANSITION"
        assert store.orders[order_id].order_status.value == "Cancelled"
        assert store.products["PROD-KIBBLE"].stock == 10

    def test_admin_unknown_status(self, client, placed_order, admin_headers):
        response = client.patch(
            f"/api/v1/orders/status/{placed_order['order_id']}", json={"status": "Lost"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert "Processing" in response.json()["error"]["details"]["allowed"]


class TestPaymentCallbackEndpoint:
    """Tests for the gateway callback routes"""

    def test_success_redirects_to_order(self, client, store, fill_cart, user_headers, order_payload,
                                        signed_callback):
        fill_cart([("PROD-KIBBLE", 1)])
        order_payload["payment_method"] = "ONLINE"
        initiation = client.post("/api/v1/orders", json=order_payload, headers=user_headers).json()["data"]
        pending = store.pending[initiation["temp_order_id"]]

        response = client.post(
            "/api/v1/payment/callback", data=signed_callback(pending), follow_redirects=False
        )

        assert response.status_code == 303
        location = urlparse(response.headers["location"])
        assert location.path == "/order-success"
        order_id = parse_qs(location.query)["orderId"][0]
        assert store.orders[order_id].payment_status.value == "Paid"
        assert store.carts[USER_ID].is_empty

    def test_unsigned_callback_redirects_to_failure(self, client, store):
        response = client.get(
            "/api/v1/payment/callback",
            params={"txnid": "TEMP-1", "status": "success", "hash": "0" * 128},
            follow_redirects=False,
        )

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.path == "/order-failed"
        assert parse_qs(location.query)["message"] == ["Payment verification failed"]
        assert not store.orders

    def test_release_expired_checkouts(self, client, store, fill_cart, user_headers, admin_headers,
                                       order_payload):
        fill_cart([("PROD-KIBBLE", 3)])
        order_payload["payment_method"] = "ONLINE"
        initiation = client.post("/api/v1/orders", json=order_payload, headers=user_headers).json()["data"]
        pending = store.pending[initiation["temp_order_id"]]
        pending.expires_at = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()

        forbidden = client.post("/api/v1/payment/release-expired", headers=user_headers)
        response = client.post("/api/v1/payment/release-expired", headers=admin_headers)

        assert forbidden.status_code == 403
        assert response.status_code == 200
        assert response.json()["data"] == {"released": 1}
        assert store.products["PROD-KIBBLE"].stock == 10
        assert store.pending[pending.txnid].failure_reason == "expired"


class TestHealthAndMiddleware:
    """Tests for health checks and request ids"""

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_storage_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["services"]["storage"]["storage"] == "InMemoryOrderStore"

    def test_storage_degraded(self, client, store, monkeypatch):
        async def unhealthy():
            return {"storage": "dynamodb", "healthy": False, "error": "unreachable"}

        monkeypatch.setattr(store, "health_check", unhealthy)

        response = client.get("/api/v1/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req_from_client"})

        assert response.headers["X-Request-ID"] == "req_from_client"
        assert "X-Process-Time" in response.headers

    def test_request_id_generated(self, client):
        response = client.get("/health")

        assert response.headers["X-Request-ID"].startswith("req_")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
