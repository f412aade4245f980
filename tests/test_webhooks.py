"""Tests for the webhooks blueprint and the ingestion pipeline end to end.

Covers:
- Signature verification (missing, malformed, tampered body)
- Idempotent processing (duplicate deliveries acknowledged, not re-run)
- Unknown topics (acknowledged, nothing written)
- Malformed JSON and schema-invalid payloads
- Handler failure visibility (row marked failed, still 200)
- Checkout / order / refund / customer topics
- Health document, recent-events listing, security headers
"""

import json
import threading
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from storehook import create_app
from storehook import config as app_config
from storehook.extensions import db
from storehook.models.checkout import Checkout, CheckoutItem
from storehook.models.customer import Customer
from storehook.models.order import Order, OrderEvent, OrderItem
from storehook.models.refund import Refund
from storehook.models.webhook_event import WebhookEvent
from storehook.services.signature import compute_signature

SECRET = "shpss_test_secret"


def _body(payload):
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def file_backed_app(tmp_path, monkeypatch):
    """App on a SQLite file so several threads share one database."""
    config = type("FileDbConfig", (app_config.TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'storehook.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False, "timeout": 30},
        },
    })
    monkeypatch.setitem(app_config.config_by_name, "testing", config)
    app = create_app("testing")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


class TestSignatureGate:
    """Only authenticated deliveries get past the front door."""

    def test_missing_signature_returns_401(self, deliver, order_payload):
        resp = deliver("orders/create", order_payload, signature="")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Invalid signature"}
        assert WebhookEvent.query.count() == 0

    def test_non_base64_signature_returns_401(self, deliver, order_payload):
        resp = deliver("orders/create", order_payload, signature="not*base64!")
        assert resp.status_code == 401

    def test_tampered_body_is_rejected(self, deliver, checkout_payload):
        """Signature over the original body, body altered in transit -> 401, no row."""
        original = _body(checkout_payload)
        signature = compute_signature(original, SECRET)
        tampered = original.replace(b'"49.99"', b'"0.01"')
        assert tampered != original

        resp = deliver("checkouts/create", tampered, signature=signature)

        assert resp.status_code == 401
        assert WebhookEvent.query.count() == 0
        assert Checkout.query.count() == 0

    def test_signature_from_other_secret_rejected(self, deliver, order_payload):
        body = _body(order_payload)
        resp = deliver(
            "orders/create", body, signature=compute_signature(body, "other_secret")
        )
        assert resp.status_code == 401


class TestCheckoutEndToEnd:
    """checkouts/create stored once, redelivery is a no-op."""

    def test_checkout_create_then_redeliver(self, deliver, checkout_payload):
        resp = deliver("checkouts/create", checkout_payload)
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "processed": True}

        checkout = Checkout.query.one()
        assert checkout.shopify_checkout_id == "30001"
        assert checkout.subtotal_minor == 4999
        assert checkout.total_price_minor == 6499
        assert checkout.total_shipping_minor == 1500
        assert checkout.currency == "QAR"
        assert checkout.phone == "+97455123456"
        assert CheckoutItem.query.count() == 1

        event = WebhookEvent.query.one()
        assert event.status == "processed"
        assert event.topic == "checkouts/create"
        assert event.resource_id == "30001"
        assert event.processed_at is not None

        # --- Identical redelivery ---
        resp = deliver("checkouts/create", checkout_payload)
        assert resp.status_code == 200
        assert resp.get_json() == {
            "received": True,
            "processed": False,
            "duplicate": True,
        }
        assert WebhookEvent.query.count() == 1
        assert Checkout.query.count() == 1
        assert CheckoutItem.query.count() == 1
        assert Customer.query.count() == 1

    def test_checkout_links_customer_with_measurements(self, deliver, checkout_payload):
        deliver("checkouts/create", checkout_payload)

        customer = Customer.query.one()
        assert customer.external_id == "7001"
        assert customer.phone == "+97455123456"
        assert customer.measurements["measurement_type"] == "custom"
        assert customer.measurements["standard_size"] == "m"
        assert customer.measurements["bust_cm"] == 92.0
        assert Checkout.query.one().customer_id == customer.id

    def test_checkout_without_phone_does_not_create_customer(
        self, deliver, checkout_payload
    ):
        checkout_payload.pop("customer")
        checkout_payload["shipping_address"]["phone"] = None
        checkout_payload["billing_address"]["phone"] = None

        resp = deliver("checkouts/create", checkout_payload)

        assert resp.get_json()["processed"] is True
        assert Customer.query.count() == 0
        assert Checkout.query.one().customer_id is None

    def test_checkout_update_replaces_items(self, deliver, checkout_payload):
        deliver("checkouts/create", checkout_payload)

        checkout_payload["line_items"].append({
            "key": "li-key-2",
            "title": "Silk Shayla",
            "variant_title": "Ivory",
            "quantity": 2,
            "price": "25.00",
        })
        checkout_payload["subtotal_price"] = "99.99"
        deliver("checkouts/update", checkout_payload)

        checkout = Checkout.query.one()
        assert checkout.subtotal_minor == 9999
        assert sorted(i.product_name for i in checkout.items) == [
            "Linen Abaya",
            "Silk Shayla",
        ]


class TestIdempotency:
    """N deliveries of the same body -> one row, one effect."""

    def test_repeated_order_delivery(self, deliver, order_payload):
        for _ in range(3):
            resp = deliver("orders/create", order_payload)
            assert resp.status_code == 200

        assert WebhookEvent.query.count() == 1
        assert Order.query.count() == 1
        assert OrderItem.query.count() == 2
        assert OrderEvent.query.count() == 1

    def test_same_order_different_body_updates_row(self, deliver, order_payload):
        """Business-key idempotency: a re-sent order with new bytes updates in place."""
        deliver("orders/create", order_payload)
        order_payload["updated_at"] = "2026-10-02T10:00:00+03:00"
        order_payload["note"] = "Leave at reception"
        deliver("orders/create", order_payload)

        assert WebhookEvent.query.count() == 2
        order = Order.query.one()
        assert order.notes == "Leave at reception"

    def test_concurrent_deliveries_apply_once(self, file_backed_app, order_payload):
        """The same signed body posted by several threads at once -> one effect."""
        body = _body(order_payload)
        headers = {
            "X-Shopify-Topic": "orders/create",
            "X-Shopify-Hmac-Sha256": compute_signature(body, SECRET),
        }
        workers = 8
        barrier = threading.Barrier(workers)
        responses = []

        def send():
            client = file_backed_app.test_client()
            barrier.wait()
            resp = client.post(
                "/webhooks/shopify",
                data=body,
                content_type="application/json",
                headers=headers,
            )
            responses.append((resp.status_code, resp.get_json()))

        threads = [threading.Thread(target=send) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert len(responses) == workers
        assert all(status == 200 for status, _ in responses)
        assert sum(1 for _, data in responses if data["processed"]) == 1
        assert sum(1 for _, data in responses if data.get("duplicate")) == workers - 1

        with file_backed_app.app_context():
            assert WebhookEvent.query.count() == 1
            assert WebhookEvent.query.one().status == "processed"
            assert Order.query.count() == 1
            assert OrderItem.query.count() == 2
            assert OrderEvent.query.count() == 1


class TestUnknownTopic:
    """Unrecognized topics are acknowledged and ignored."""

    def test_unknown_topic_acknowledged_without_writes(self, deliver):
        resp = deliver("products/create", {"id": 1, "title": "Abaya"})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "received": True,
            "processed": False,
            "topic": "unknown",
        }
        assert WebhookEvent.query.count() == 0
        assert Order.query.count() == 0
        assert Checkout.query.count() == 0


class TestBadPayloads:
    """Malformed and invalid bodies are acknowledged, never retried."""

    def test_malformed_json(self, deliver):
        resp = deliver("orders/create", b"{not json")

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "processed": False}
        assert WebhookEvent.query.count() == 0

    def test_deeply_nested_json_is_malformed(self, deliver):
        """Nesting beyond the decoder's recursion limit is acknowledged, not a 500."""
        resp = deliver("orders/create", b"[" * 100000 + b"]" * 100000)

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "processed": False}
        assert WebhookEvent.query.count() == 0

    def test_missing_required_id_marks_failed(self, deliver):
        resp = deliver("orders/create", {"name": "#1002", "total_price": "10.00"})

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "processed": False}
        event = WebhookEvent.query.one()
        assert event.status == "failed"
        assert event.error_message.startswith("Validation failed")
        assert "id" in event.error_message
        assert Order.query.count() == 0

    def test_refund_without_order_id_marks_failed(self, deliver):
        deliver("refunds/create", {"id": 1, "transactions": []})

        event = WebhookEvent.query.one()
        assert event.status == "failed"
        assert "order_id" in event.error_message

    def test_non_object_payload_marks_failed(self, deliver):
        resp = deliver("orders/create", [1, 2, 3])

        assert resp.status_code == 200
        event = WebhookEvent.query.one()
        assert event.status == "failed"
        assert event.resource_id == "unknown"


class TestHandlerFailure:
    """Data-layer failures are durable and visible but still acknowledged."""

    @patch("storehook.services.shopify_service.upsert_order")
    def test_constraint_violation_marks_failed(self, mock_upsert, deliver, order_payload):
        mock_upsert.side_effect = IntegrityError(
            "INSERT INTO orders", {}, Exception("UNIQUE constraint failed")
        )

        resp = deliver("orders/create", order_payload)

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "processed": False}
        event = WebhookEvent.query.one()
        assert event.status == "failed"
        assert "UNIQUE constraint failed" in event.error_message
        # Partial work (the customer insert) was rolled back
        assert Customer.query.count() == 0

    @patch("storehook.services.shopify_service.replace_checkout_items")
    def test_unexpected_exception_returns_generic_ack(
        self, mock_replace, deliver, checkout_payload
    ):
        mock_replace.side_effect = RuntimeError("boom")

        resp = deliver("checkouts/create", checkout_payload)

        assert resp.status_code == 200
        assert resp.get_json() == {
            "received": True,
            "processed": False,
            "error": "Processing failed",
        }
        event = WebhookEvent.query.one()
        assert event.status == "failed"
        assert event.error_message == "boom"
        assert Checkout.query.count() == 0

    @patch("storehook.services.shopify_service.upsert_order")
    def test_failed_event_is_not_retried_on_redelivery(
        self, mock_upsert, deliver, order_payload
    ):
        mock_upsert.side_effect = IntegrityError("x", {}, Exception("boom"))
        deliver("orders/create", order_payload)
        resp = deliver("orders/create", order_payload)

        assert resp.get_json()["duplicate"] is True
        assert mock_upsert.call_count == 1


class TestOrders:
    """orders/create, orders/paid, orders/cancelled."""

    def test_order_create_amounts_in_minor_units(self, deliver, order_payload):
        order_payload["total_price"] = "12.50"
        deliver("orders/create", order_payload)

        order = Order.query.one()
        assert order.total_amount_minor == 1250
        assert order.subtotal_minor == 11000
        assert order.total_shipping_minor == 1550
        assert order.status == "pending"
        assert order.paid_amount_minor == 0
        assert order.order_number == "1001"
        assert order.order_name == "#1001"
        assert order.notes == "Gift wrap please"

    def test_order_notes_come_from_the_order_only(self, deliver, order_payload):
        order_payload["note"] = None
        order_payload["customer"]["note"] = "VIP - prefers WhatsApp"
        deliver("orders/create", order_payload)

        assert Order.query.one().notes is None
        assert Customer.query.one().notes == "VIP - prefers WhatsApp"

    def test_out_of_range_amount_is_coerced(self, deliver, order_payload):
        order_payload["total_price"] = "1e100"
        resp = deliver("orders/create", order_payload)

        assert resp.get_json() == {"received": True, "processed": True}
        assert Order.query.one().total_amount_minor == 0

    def test_order_items_and_event(self, deliver, order_payload):
        deliver("orders/create", order_payload)

        order = Order.query.one()
        items = {i.product_name: i for i in order.items}
        assert items["Linen Abaya"].size == "M"
        assert items["Linen Abaya"].color == "Black"
        assert items["Linen Abaya"].unit_price_minor == 6000
        assert items["Silk Shayla"].quantity == 2
        assert items["Silk Shayla"].line_total_minor == 5000

        event = OrderEvent.query.one()
        assert event.event_type == "order_created"
        assert event.order_id == order.id
        assert event.metadata_["total_price_minor"] == 12550

    def test_children_replaced_on_update(self, deliver, order_payload):
        deliver("orders/create", order_payload)
        assert OrderItem.query.count() == 2

        order_payload["line_items"] = order_payload["line_items"][:1]
        order_payload["updated_at"] = "2026-10-03T08:00:00+03:00"
        deliver("orders/create", order_payload)

        items = OrderItem.query.all()
        assert len(items) == 1
        assert items[0].product_name == "Linen Abaya"

    def test_paid_after_create(self, deliver, order_payload):
        deliver("orders/create", order_payload)

        order_payload["financial_status"] = "paid"
        deliver("orders/paid", order_payload)

        order = Order.query.one()
        assert order.status == "paid"
        assert order.financial_status == "paid"
        assert order.paid_amount_minor == 12550
        assert OrderEvent.query.filter_by(event_type="order_paid").count() == 1

    def test_paid_before_create_creates_order(self, deliver, order_payload):
        order_payload["financial_status"] = "paid"
        resp = deliver("orders/paid", order_payload)

        assert resp.get_json()["processed"] is True
        order = Order.query.one()
        assert order.status == "paid"
        assert order.paid_amount_minor == 12550
        assert OrderItem.query.count() == 2

    def test_late_create_does_not_regress_paid(self, deliver, order_payload):
        paid = dict(order_payload, financial_status="paid")
        deliver("orders/paid", paid)

        # Original orders/create arrives afterwards
        deliver("orders/create", order_payload)

        order = Order.query.one()
        assert order.status == "paid"
        assert order.paid_amount_minor == 12550

    def test_cancelled(self, deliver, order_payload):
        deliver("orders/create", order_payload)

        order_payload.update(
            financial_status="voided",
            cancel_reason="customer",
            cancelled_at="2026-10-04T11:00:00+03:00",
        )
        deliver("orders/cancelled", order_payload)

        order = Order.query.one()
        assert order.status == "cancelled"
        assert order.financial_status == "voided"
        assert order.cancel_reason == "customer"
        assert order.cancelled_at is not None
        assert order.notes == "Gift wrap please"


class TestRefunds:
    """refunds/create."""

    def test_refund_sum_is_exact(self, deliver, order_payload, refund_payload):
        deliver("orders/create", order_payload)
        deliver("refunds/create", refund_payload)

        refund = Refund.query.one()
        assert refund.amount_minor == 3030
        assert refund.currency == "QAR"
        assert refund.shopify_order_id == "820001"
        assert refund.order_id == Order.query.one().id
        assert refund.note == "Damaged in transit"

        event = OrderEvent.query.filter_by(event_type="refund_created").one()
        assert event.metadata_["amount_minor"] == 3030

    def test_refund_before_order(self, deliver, refund_payload):
        resp = deliver("refunds/create", refund_payload)

        assert resp.get_json()["processed"] is True
        refund = Refund.query.one()
        assert refund.order_id is None
        event = WebhookEvent.query.one()
        assert event.resource_id == "820001"

    def test_refund_replay_with_new_body_keeps_one_row(self, deliver, refund_payload):
        deliver("refunds/create", refund_payload)
        refund_payload["note"] = "Damaged in transit (updated)"
        deliver("refunds/create", refund_payload)

        assert Refund.query.count() == 1
        assert WebhookEvent.query.count() == 2


class TestCustomerTopics:
    """customers/create and customers/update."""

    def test_customer_create(self, deliver, customer_payload):
        resp = deliver("customers/create", customer_payload)

        assert resp.get_json()["processed"] is True
        customer = Customer.query.one()
        assert customer.external_id == "7001"
        assert customer.phone == "+97455123456"
        assert customer.full_name == "Layla Hassan"
        assert customer.shopify_total_spend_minor == 12000

    def test_customer_tags_and_marketing_stored(self, deliver, customer_payload):
        customer_payload["tags"] = "vip, repeat"
        customer_payload["accepts_marketing"] = True
        deliver("customers/create", customer_payload)

        customer = Customer.query.one()
        assert customer.tags == "vip, repeat"
        assert customer.accepts_marketing is True

    def test_customer_update_never_overwrites(self, deliver, customer_payload):
        deliver("customers/create", customer_payload)
        customer_payload["first_name"] = "Changed"
        customer_payload["default_address"]["name"] = "Changed Name"
        deliver("customers/update", customer_payload)

        customer = Customer.query.one()
        assert customer.full_name == "Layla Hassan"

    def test_phone_falls_back_to_latest_checkout(self, deliver, customer_payload):
        db.session.add(Checkout(
            shopify_checkout_id="c-1",
            email="layla@example.com",
            phone="+97466001122",
            currency="QAR",
        ))
        db.session.commit()

        customer_payload["default_address"]["phone"] = None
        deliver("customers/create", customer_payload)

        assert Customer.query.one().phone == "+97466001122"


class TestHealthAndHeaders:
    """GET /webhooks/shopify and response headers."""

    def test_health_document(self, client):
        resp = client.get("/webhooks/shopify")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["endpoint"] == "shopify-webhooks"
        assert "orders/paid" in data["topics"]
        assert len(data["topics"]) == 8

    def test_health_has_no_side_effects(self, client):
        client.get("/webhooks/shopify")
        assert WebhookEvent.query.count() == 0

    def test_trace_id_header(self, deliver, order_payload):
        resp = deliver("orders/create", order_payload)
        assert resp.headers["X-Webhook-Trace-Id"].startswith("wh_")

    def test_security_headers(self, client):
        resp = client.get("/webhooks/shopify")
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"
        assert resp.headers.get("Cache-Control") == "no-store"

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}


class TestRecentEvents:
    """GET /webhooks/recent (operator token)."""

    AUTH = {"Authorization": "Bearer operator-test-token"}

    def test_requires_token(self, client):
        assert client.get("/webhooks/recent").status_code == 401
        resp = client.get(
            "/webhooks/recent", headers={"Authorization": "Bearer wrong"}
        )
        assert resp.status_code == 401

    def test_lists_newest_events(self, client, deliver, order_payload, refund_payload):
        deliver("orders/create", order_payload)
        deliver("refunds/create", refund_payload)

        resp = client.get("/webhooks/recent", headers=self.AUTH)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["count"] == 2
        assert {e["topic"] for e in data["events"]} == {"orders/create", "refunds/create"}
        assert "raw_payload" not in data["events"][0]

    def test_limit_and_status_filter(self, client, deliver, order_payload):
        deliver("orders/create", order_payload)
        deliver("orders/create", {"name": "no id"})

        resp = client.get("/webhooks/recent?status=failed", headers=self.AUTH)
        events = resp.get_json()["events"]
        assert len(events) == 1
        assert events[0]["status"] == "failed"

        resp = client.get("/webhooks/recent?limit=1", headers=self.AUTH)
        assert resp.get_json()["count"] == 1

    def test_unknown_status_is_400(self, client):
        resp = client.get("/webhooks/recent?status=bogus", headers=self.AUTH)
        assert resp.status_code == 400

    def test_disabled_without_configured_token(self, app, client):
        app.config["WEBHOOK_ADMIN_TOKEN"] = None
        try:
            resp = client.get("/webhooks/recent", headers=self.AUTH)
            assert resp.status_code == 404
        finally:
            app.config["WEBHOOK_ADMIN_TOKEN"] = "operator-test-token"
