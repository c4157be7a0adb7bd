"""
PawMart Test Configuration and Fixtures

This module provides:
- Test environment settings (set before any pawmart import)
- An in-memory store seeded with a small pet catalog
- An Easebuzz gateway backed by httpx.MockTransport
- Service container, API client and JWT fixtures
- Helpers for carts and signed gateway callbacks
"""

import os

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["JWT_SECRET"] = "test_secret_key_for_testing_only_32chars!"
os.environ["AWS_REGION"] = "ap-south-1"
os.environ["EASEBUZZ_KEY"] = "TESTKEY"
os.environ["EASEBUZZ_SALT"] = "TESTSALT"
os.environ["EASEBUZZ_BASE_URL"] = "https://testpay.easebuzz.in"
os.environ["FRONTEND_URL"] = "http://shop.test"
os.environ["PAYMENT_CALLBACK_URL"] = "http://api.test/api/v1/payment/callback"
os.environ["USE_AWS_SES"] = "false"

from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from pawmart.api.deps import build_services, get_services
from pawmart.core.security import create_access_token
from pawmart.database.memory_store import InMemoryOrderStore
from pawmart.models.catalog import Cart, CartItem, Product, UserProfile, Variation
from pawmart.models.checkout import PendingCheckout
from pawmart.models.order import ShippingAddress
from pawmart.services.email_service import EmailService
from pawmart.services.payment_gateway import EasebuzzGateway, encode_echo_payload

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_ID = "admin-1"


# =============================================================================
# Catalog and Storage Fixtures
# =============================================================================

def build_catalog() -> List[Product]:
    return [
        Product(
            product_id="PROD-KIBBLE",
            name="Grain-Free Dog Kibble",
            price=Decimal("40.00"),
            stock=10,
            images=["https://cdn.test/kibble.jpg"],
            category="Dog Food",
        ),
        Product(
            product_id="PROD-COLLAR",
            name="Reflective Cat Collar",
            price=Decimal("30.00"),
            discount_price=Decimal("25.00"),
            stock=5,
            category="Accessories",
        ),
        Product(
            product_id="PROD-LEASH",
            name="Nylon Leash",
            price=Decimal("20.00"),
            stock=0,
            variations=[
                Variation(variation_id="VAR-S", name="Small", price=Decimal("20.00"), stock=3),
                Variation(
                    variation_id="VAR-L",
                    name="Large",
                    price=Decimal("25.00"),
                    discount_price=Decimal("22.00"),
                    stock=2,
                ),
            ],
            category="Accessories",
        ),
    ]


@pytest.fixture
def store() -> InMemoryOrderStore:
    """In-memory store with the test catalog and two customers."""
    memory_store = InMemoryOrderStore()
    for product in build_catalog():
        memory_store.add_product(product)
    memory_store.put_user(UserProfile(user_id=USER_ID, email="asha@example.com", name="Asha", phone="9876543210"))
    memory_store.put_user(UserProfile(user_id=OTHER_USER_ID, email="ravi@example.com", name="Ravi"))
    return memory_store


@pytest.fixture
def fill_cart(store):
    """Put a cart for a user: fill_cart([("PROD-KIBBLE", 2), ("PROD-LEASH", 1, "VAR-S")])."""

    def _fill(lines, user_id: str = USER_ID) -> Cart:
        items = [CartItem(product_id=line[0], quantity=line[1], variation_id=line[2] if len(line) > 2 else None)
                 for line in lines]
        cart = Cart(user_id=user_id, items=items)
        store.put_cart(cart)
        return store.carts[user_id]

    return _fill


@pytest.fixture
def shipping_address() -> ShippingAddress:
    return ShippingAddress(
        full_name="Asha Verma",
        address_line1="12 MG Road",
        city="Pune",
        state="Maharashtra",
        postal_code="411001",
        phone="9876543210",
    )


# =============================================================================
# Gateway and Email Fixtures
# =============================================================================

@pytest.fixture
def gateway_requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def gateway_response() -> Dict[str, Any]:
    """Mutable canned gateway answer; tests override status_code/json/exc."""
    return {"status_code": 200, "json": {"status": 1, "data": "tok_abc123"}, "exc": None}


@pytest.fixture
def gateway(gateway_requests, gateway_response) -> EasebuzzGateway:
    def handler(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        if gateway_response["exc"] is not None:
            raise gateway_response["exc"]
        return httpx.Response(gateway_response["status_code"], json=gateway_response["json"])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EasebuzzGateway(
        key="TESTKEY",
        salt="TESTSALT",
        base_url="https://testpay.easebuzz.in",
        timeout=5.0,
        client=client,
    )


@pytest.fixture
def email_service() -> MagicMock:
    """Email sink that records sends instead of calling SES."""
    mock = MagicMock(spec=EmailService)
    mock.send_email = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def signed_callback(gateway):
    """Build a correctly signed gateway callback for a pending checkout."""

    def _build(pending: PendingCheckout, status: str = "success", **overrides) -> Dict[str, str]:
        data = {
            "key": gateway.key,
            "txnid": pending.txnid,
            "amount": pending.amount,
            "productinfo": "Order Payment",
            "firstname": "Asha",
            "email": "asha@example.com",
            "status": status,
            "mode": "UPI",
            "udf1": pending.user_id,
            "udf2": encode_echo_payload({
                "fullName": pending.shipping_address.full_name,
                "city": pending.shipping_address.city,
                "postalCode": pending.shipping_address.postal_code,
                "userId": pending.user_id,
            }),
        }
        data.update(overrides)
        data["hash"] = gateway.callback_hash(data)
        return data

    return _build


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def services(store, gateway, email_service):
    return build_services(store=store, gateway=gateway, email_service=email_service)


@pytest.fixture
def user_context() -> Dict[str, Any]:
    """Identity as produced by get_current_user for the primary customer."""
    return {"user_id": USER_ID, "email": "asha@example.com", "name": "Asha", "phone": None, "role": "user"}


@pytest.fixture
def admin_context() -> Dict[str, Any]:
    return {"user_id": ADMIN_ID, "email": "admin@example.com", "name": "Admin", "phone": None, "role": "admin"}


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def app(services):
    """Application with the test service container wired in."""
    from pawmart.main import app as fastapi_app
    fastapi_app.dependency_overrides[get_services] = lambda: services
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator:
    """Create synchronous test client."""
    with TestClient(app) as test_client:
        yield test_client


def _token(user_id: str, role: str = "user", email: Optional[str] = None) -> str:
    return create_access_token({"sub": user_id, "role": role, "email": email, "name": user_id})


@pytest.fixture
def user_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {_token(USER_ID, email='asha@example.com')}"}


@pytest.fixture
def other_user_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {_token(OTHER_USER_ID, email='ravi@example.com')}"}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {_token(ADMIN_ID, role='admin')}"}
