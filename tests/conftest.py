"""Shared test fixtures for the storehook test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fixed secrets)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- deliver: POST a correctly signed Shopify delivery to /webhooks/shopify
- checkout_payload / order_payload / refund_payload / customer_payload:
  realistic Shopify payloads (numbers as strings, nested objects)
"""

import copy
import json

import pytest

from storehook import create_app
from storehook.extensions import db as _db
from storehook.services.signature import compute_signature

WEBHOOK_URL = "/webhooks/shopify"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def sign(body, secret="shpss_test_secret"):
    return compute_signature(body, secret)


def encode(payload):
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def deliver(client):
    """Send a signed delivery. Returns the response.

    `payload` may be a dict (JSON-encoded here) or raw bytes.
    """

    def _deliver(topic, payload, signature=None, headers=None):
        body = payload if isinstance(payload, bytes) else encode(payload)
        all_headers = {
            "X-Shopify-Topic": topic,
            "X-Shopify-Hmac-Sha256": signature if signature is not None else sign(body),
            "X-Shopify-Shop-Domain": "test-shop.myshopify.com",
        }
        all_headers.update(headers or {})
        return client.post(
            WEBHOOK_URL,
            data=body,
            content_type="application/json",
            headers=all_headers,
        )

    return _deliver


# ──────────────────────────────────────────────
# Sample payloads
# ──────────────────────────────────────────────

_ADDRESS = {
    "first_name": "Layla",
    "last_name": "Hassan",
    "name": "Layla Hassan",
    "address1": "Al Sadd Street 12",
    "address2": None,
    "city": "Doha",
    "province": None,
    "province_code": None,
    "country": "Qatar",
    "country_code": "QA",
    "zip": "",
    "phone": "55123456",
    "company": None,
}

_CUSTOMER = {
    "id": 7001,
    "email": "layla@example.com",
    "first_name": "Layla",
    "last_name": "Hassan",
    "phone": None,
    "total_spent": "120.00",
    "orders_count": 2,
    "note": None,
    "default_address": dict(_ADDRESS),
}

CHECKOUT = {
    "id": 30001,
    "token": "chk_tok_abc",
    "email": "layla@example.com",
    "customer": _CUSTOMER,
    "shipping_address": _ADDRESS,
    "billing_address": _ADDRESS,
    "subtotal_price": "49.99",
    "total_tax": "0.00",
    "total_price": "64.99",
    "currency": "QAR",
    "shipping_lines": [{"title": "Express", "price": "15.00", "phone": None}],
    "line_items": [
        {
            "key": "li-key-1",
            "title": "Linen Abaya",
            "variant_title": "M / Black",
            "sku": "ABY-M-BLK",
            "quantity": 1,
            "price": "49.99",
            "properties": {"Bust": "92 cm", "_internal": "x"},
        }
    ],
    "abandoned_checkout_url": "https://test-shop.myshopify.com/checkouts/abc/recover",
    "created_at": "2026-10-01T10:00:00+03:00",
    "completed_at": None,
}

ORDER = {
    "id": 820001,
    "order_number": 1001,
    "name": "#1001",
    "email": "layla@example.com",
    "customer": _CUSTOMER,
    "shipping_address": _ADDRESS,
    "billing_address": _ADDRESS,
    "subtotal_price": "110.00",
    "total_tax": "0.00",
    "total_price": "125.50",
    "total_shipping_price_set": {
        "shop_money": {"amount": "15.50", "currency_code": "QAR"}
    },
    "currency": "QAR",
    "financial_status": "pending",
    "fulfillment_status": None,
    "note": "<b>Gift wrap</b> please",
    "line_items": [
        {
            "id": 5001,
            "title": "Linen Abaya",
            "variant_title": "M / Black",
            "sku": "ABY-M-BLK",
            "quantity": "1",
            "price": "60.00",
            "properties": [{"name": "Sleeve", "value": "58"}],
        },
        {
            "id": 5002,
            "title": "Silk Shayla",
            "variant_title": "Ivory",
            "sku": "SHY-IVR",
            "quantity": 2,
            "price": "25.00",
            "properties": [],
        },
    ],
    "shipping_lines": [{"title": "Express", "price": "15.50"}],
    "created_at": "2026-10-02T09:15:00+03:00",
    "updated_at": "2026-10-02T09:15:00+03:00",
}

REFUND = {
    "id": 990001,
    "order_id": 820001,
    "note": "Damaged in transit",
    "reason": None,
    "created_at": "2026-10-05T12:00:00+03:00",
    "processed_at": "2026-10-05T12:00:05+03:00",
    "refund_line_items": [{"id": 1, "line_item_id": 5001, "quantity": 1}],
    "transactions": [
        {"amount": "10.10", "currency": "QAR", "kind": "refund", "status": "success"},
        {"amount": "20.20", "currency": "QAR", "kind": "refund", "status": "success"},
    ],
}


@pytest.fixture
def checkout_payload():
    return copy.deepcopy(CHECKOUT)


@pytest.fixture
def order_payload():
    return copy.deepcopy(ORDER)


@pytest.fixture
def refund_payload():
    return copy.deepcopy(REFUND)


@pytest.fixture
def customer_payload():
    return copy.deepcopy(_CUSTOMER)
