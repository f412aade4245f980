"""Shopify service — webhook pipeline and per-topic handlers.

Responsible for:
- Verifying the delivery signature
- Idempotency via the webhook_events table (payload hash)
- Routing by topic through an immutable registry
- Handlers that validate, extract and persist one event's effect
- Reducing every delivery to a ProcessingOutcome

Only an unauthenticated delivery is answered with a non-2xx status.
Everything else is acknowledged so Shopify does not retry; failures stay
visible as webhook_events rows with status "failed".
"""

import enum
import json
import logging
from dataclasses import dataclass
from types import MappingProxyType

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from storehook.extensions import db
from storehook.services.commerce_service import (
    DataLayerError,
    find_latest_checkout_phone,
    find_customer,
    find_or_create_customer,
    get_order_id,
    insert_order_event,
    insert_refund,
    mark_order_cancelled,
    mark_order_paid,
    replace_checkout_items,
    replace_order_items,
    upsert_checkout,
    upsert_order,
)
from storehook.services.extractors import (
    clean_note,
    extract_customer_info,
    extract_customer_measurements,
    extract_line_items,
    extract_refund_amount,
    extract_resource_id,
    extract_shipping_total,
    format_address,
    price_to_minor,
)
from storehook.services.idempotency import (
    generate_payload_hash,
    insert_webhook_event,
    mark_failed,
    mark_processed,
)
from storehook.services.schemas import (
    CheckoutPayload,
    CustomerPayload,
    OrderPayload,
    RefundPayload,
    parse_as,
)
from storehook.services.signature import verify_shopify_hmac
from storehook.services.webhook_logger import (
    create_webhook_logger,
    mask_email,
    mask_phone,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerResult:
    success: bool
    error: str | None = None
    invalid: bool = False  # payload failed schema validation


def _invalid(error, log):
    log.validation_failed(error)
    return HandlerResult(success=False, error=error, invalid=True)


def _failed(what, error, log):
    log.error(f"{what} failed: {error}", exc_info=True)
    return HandlerResult(success=False, error=str(error))


def _settings():
    return (
        current_app.config["DEFAULT_CURRENCY"],
        current_app.config["DEFAULT_DIAL_CODE"],
    )


# ──────────────────────────────────────────────
# Checkout handler
# ──────────────────────────────────────────────

def handle_checkout(payload, payload_hash, log):
    """checkouts/create and checkouts/update.

    A customer is only created when the checkout carries a usable phone;
    otherwise the checkout is linked to an already-known customer, if any,
    and orders/* fills in the rest later.
    """
    parsed = parse_as(CheckoutPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    checkout = parsed.value
    default_currency, dial_code = _settings()

    try:
        info = extract_customer_info(checkout, dial_code)
        if info.phone:
            customer_id = find_or_create_customer(
                info, extract_customer_measurements(checkout.line_items)
            )
        else:
            customer_id = find_customer(info)
            log.info(
                "Checkout has no usable phone; not creating a customer",
                fields={"email": mask_email(info.email), "linked": bool(customer_id)},
            )

        items = extract_line_items(checkout.line_items)
        checkout_id = upsert_checkout({
            "shopify_checkout_id": checkout.id,
            "shopify_checkout_token": checkout.token,
            "customer_id": customer_id,
            "email": info.email,
            "full_name": info.full_name,
            "phone": info.phone,
            "shipping_address": format_address(checkout.shipping_address),
            "subtotal_minor": price_to_minor(checkout.subtotal_price),
            "total_tax_minor": price_to_minor(checkout.total_tax),
            "total_shipping_minor": extract_shipping_total(checkout),
            "total_price_minor": price_to_minor(checkout.total_price),
            "currency": checkout.currency or default_currency,
            "abandoned_checkout_url": checkout.abandoned_checkout_url,
            "completed_at": checkout.completed_at,
            "raw_payload": payload,
        })
        replace_checkout_items(checkout_id, items)
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Checkout handler", e, log)

    log.info(
        "Checkout stored",
        fields={"checkout_id": checkout_id, "item_count": len(items)},
    )
    return HandlerResult(success=True)


# ──────────────────────────────────────────────
# Order handlers
# ──────────────────────────────────────────────

def _store_order(order, payload, log):
    """Upsert the full order and its items from an order payload."""
    default_currency, dial_code = _settings()

    info = extract_customer_info(order, dial_code)
    customer_id = find_or_create_customer(
        info, extract_customer_measurements(order.line_items)
    )
    if not customer_id:
        log.warning(
            "Order has no identifiable customer; storing unlinked",
            fields={"email": mask_email(info.email), "phone": mask_phone(info.phone)},
        )

    total = price_to_minor(order.total_price)
    items = extract_line_items(order.line_items)
    order_id = upsert_order({
        "shopify_order_id": order.id,
        "order_number": order.order_number,
        "order_name": order.name,
        "customer_id": customer_id,
        "financial_status": order.financial_status,
        "fulfillment_status": order.fulfillment_status,
        "currency": order.currency or default_currency,
        "subtotal_minor": price_to_minor(order.subtotal_price),
        "total_tax_minor": price_to_minor(order.total_tax),
        "total_shipping_minor": extract_shipping_total(order),
        "total_amount_minor": total,
        "paid_amount_minor": total if order.financial_status == "paid" else 0,
        "shipping_address": format_address(order.shipping_address),
        "notes": clean_note(order.note),
        "placed_at": order.created_at,
        "raw_payload": payload,
    })
    replace_order_items(order_id, items)
    log.info(
        "Order stored",
        fields={"order_id": order_id, "item_count": len(items)},
    )
    return order_id


def handle_order_create(payload, payload_hash, log):
    parsed = parse_as(OrderPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    order = parsed.value

    try:
        _store_order(order, payload, log)
        insert_order_event(
            order.id,
            "order_created",
            "orders/create",
            payload_hash,
            metadata={
                "order_number": order.order_number,
                "financial_status": order.financial_status,
                "total_price_minor": price_to_minor(order.total_price),
            },
            occurred_at=order.created_at,
        )
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Order create handler", e, log)
    return HandlerResult(success=True)


def _ensure_order(order, payload, log):
    """Create the order from this payload if orders/create hasn't landed yet."""
    if get_order_id(order.id) is None:
        log.info("Order not seen yet; creating it from this payload")
        _store_order(order, payload, log)


def handle_order_paid(payload, payload_hash, log):
    """orders/paid: record payment on the order (creating it if missing)."""
    parsed = parse_as(OrderPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    order = parsed.value
    paid_amount = price_to_minor(order.total_price)

    try:
        _ensure_order(order, payload, log)
        if not mark_order_paid(order.id, paid_amount):
            raise DataLayerError(f"Order {order.id} not found after upsert")
        insert_order_event(
            order.id,
            "order_paid",
            "orders/paid",
            payload_hash,
            metadata={"paid_amount_minor": paid_amount, "financial_status": "paid"},
            occurred_at=order.updated_at,
        )
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Order paid handler", e, log)

    log.info("Order marked paid", fields={"paid_amount_minor": paid_amount})
    return HandlerResult(success=True)


def handle_order_cancelled(payload, payload_hash, log):
    """orders/cancelled: cancel the order (creating it if missing)."""
    parsed = parse_as(OrderPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    order = parsed.value
    reason = clean_note(order.cancel_reason)

    try:
        _ensure_order(order, payload, log)
        if not mark_order_cancelled(
            order.id, reason, order.cancelled_at, order.financial_status
        ):
            raise DataLayerError(f"Order {order.id} not found after upsert")
        insert_order_event(
            order.id,
            "order_cancelled",
            "orders/cancelled",
            payload_hash,
            metadata={"cancel_reason": reason},
            occurred_at=order.cancelled_at,
        )
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Order cancelled handler", e, log)

    log.info("Order cancelled", fields={"cancel_reason": reason})
    return HandlerResult(success=True)


# ──────────────────────────────────────────────
# Refund handler
# ──────────────────────────────────────────────

def handle_refund_create(payload, payload_hash, log):
    parsed = parse_as(RefundPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    refund = parsed.value
    default_currency, _ = _settings()

    amount = extract_refund_amount(refund.transactions)
    currency = next(
        (tx.currency for tx in refund.transactions if tx.currency),
        default_currency,
    )
    refunded_at = refund.processed_at or refund.created_at

    try:
        refund_id = insert_refund({
            "shopify_refund_id": refund.id,
            "shopify_order_id": refund.order_id,
            "amount_minor": amount,
            "currency": currency,
            "reason": refund.reason,
            "note": clean_note(refund.note),
            "refund_line_items": payload.get("refund_line_items") or [],
            "refunded_at": refunded_at,
            "raw_payload": payload,
        })
        insert_order_event(
            refund.order_id,
            "refund_created",
            "refunds/create",
            payload_hash,
            metadata={"refund_id": refund.id, "amount_minor": amount},
            occurred_at=refunded_at,
        )
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Refund handler", e, log)

    log.info("Refund stored", fields={"refund_id": refund_id, "amount_minor": amount})
    return HandlerResult(success=True)


# ──────────────────────────────────────────────
# Customer handler
# ──────────────────────────────────────────────

def handle_customer(payload, payload_hash, log):
    """customers/create and customers/update: make sure the customer exists."""
    parsed = parse_as(CustomerPayload, payload)
    if not parsed.ok:
        return _invalid(parsed.error, log)
    _, dial_code = _settings()

    try:
        info = extract_customer_info(parsed.value, dial_code)
        if not info.phone and info.email:
            info.phone = find_latest_checkout_phone(info.email)
        customer_id = find_or_create_customer(info)
    except (DataLayerError, SQLAlchemyError) as e:
        return _failed("Customer handler", e, log)

    log.info("Customer resolved", fields={"customer_id": customer_id})
    return HandlerResult(success=True)


# ──────────────────────────────────────────────
# Topic registry
# ──────────────────────────────────────────────

TOPIC_HANDLERS = MappingProxyType({
    "checkouts/create": handle_checkout,
    "checkouts/update": handle_checkout,
    "orders/create": handle_order_create,
    "orders/paid": handle_order_paid,
    "orders/cancelled": handle_order_cancelled,
    "refunds/create": handle_refund_create,
    "customers/create": handle_customer,
    "customers/update": handle_customer,
})


def get_handler(topic):
    return TOPIC_HANDLERS.get(topic)


def is_known_topic(topic):
    return topic in TOPIC_HANDLERS


def health_document():
    return {
        "status": "ok",
        "endpoint": "shopify-webhooks",
        "topics": list(TOPIC_HANDLERS),
    }


# ──────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────

class ProcessingOutcome(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    MALFORMED = "malformed"
    UNRECOGNIZED = "unrecognized"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    HANDLER_SUCCEEDED = "handler_succeeded"
    HANDLER_FAILED = "handler_failed"
    ERROR = "error"


# The one place that decides what Shopify sees.
OUTCOME_HTTP_STATUS = MappingProxyType({
    ProcessingOutcome.UNAUTHENTICATED: 401,
    ProcessingOutcome.MALFORMED: 200,
    ProcessingOutcome.UNRECOGNIZED: 200,
    ProcessingOutcome.DUPLICATE: 200,
    ProcessingOutcome.INVALID: 200,
    ProcessingOutcome.HANDLER_SUCCEEDED: 200,
    ProcessingOutcome.HANDLER_FAILED: 200,
    ProcessingOutcome.ERROR: 200,
})


@dataclass(frozen=True)
class WebhookResult:
    outcome: ProcessingOutcome
    trace_id: str

    @property
    def http_status(self):
        return OUTCOME_HTTP_STATUS[self.outcome]

    @property
    def body(self):
        if self.outcome is ProcessingOutcome.UNAUTHENTICATED:
            return {"error": "Invalid signature"}

        body = {
            "received": True,
            "processed": self.outcome is ProcessingOutcome.HANDLER_SUCCEEDED,
        }
        if self.outcome is ProcessingOutcome.DUPLICATE:
            body["duplicate"] = True
        elif self.outcome is ProcessingOutcome.UNRECOGNIZED:
            body["topic"] = "unknown"
        elif self.outcome is ProcessingOutcome.ERROR:
            body["error"] = "Processing failed"
        return body


def process_webhook(raw_body, signature, topic, shop_domain=None):
    """Run one delivery through the pipeline.

    Args:
        raw_body: Request body bytes exactly as received.
        signature: X-Shopify-Hmac-Sha256 header value.
        topic: X-Shopify-Topic header value (None -> "unknown").
        shop_domain: X-Shopify-Shop-Domain, for logging only.

    Returns:
        WebhookResult. Never raises.
    """
    log = create_webhook_logger()
    topic = topic or "unknown"

    def result(outcome):
        elapsed = log.elapsed_ms()
        if elapsed > current_app.config["WEBHOOK_SLOW_REQUEST_MS"]:
            log.warning(f"Slow webhook: {elapsed}ms", fields={"outcome": outcome.value})
        return WebhookResult(outcome, log.trace_id)

    # --- Authenticate ---
    if not verify_shopify_hmac(
        raw_body, signature, current_app.config["SHOPIFY_WEBHOOK_SECRET"]
    ):
        log.warning(
            "Invalid webhook signature",
            fields={"topic": topic, "shop_domain": shop_domain, "outcome": "rejected"},
        )
        return result(ProcessingOutcome.UNAUTHENTICATED)

    payload_hash = generate_payload_hash(raw_body)

    # --- Parse ---
    try:
        payload = json.loads(raw_body)
    except (ValueError, RecursionError) as e:
        log.error(
            f"Failed to parse JSON payload: {e}",
            fields={"topic": topic, "payload_hash": payload_hash[:16], "outcome": "failed"},
        )
        return result(ProcessingOutcome.MALFORMED)

    resource_id = extract_resource_id(topic, payload)
    log.webhook_received(topic, resource_id, payload_hash, shop_domain)

    # --- Route ---
    handler = get_handler(topic)
    if handler is None:
        log.webhook_skipped(f"unrecognized topic {topic}")
        return result(ProcessingOutcome.UNRECOGNIZED)

    recorded = False
    try:
        # --- Deduplicate ---
        inserted = insert_webhook_event(
            topic, payload_hash, resource_id, payload, log
        )
        if not inserted.is_new:
            log.webhook_skipped("duplicate")
            return result(ProcessingOutcome.DUPLICATE)
        recorded = True

        # --- Handle ---
        outcome = handler(payload, payload_hash, log)
        if outcome.success:
            db.session.commit()
            mark_processed(payload_hash, log)
            log.webhook_processed()
            return result(ProcessingOutcome.HANDLER_SUCCEEDED)

        db.session.rollback()
        mark_failed(payload_hash, outcome.error or "Unknown error", log)
        if outcome.invalid:
            return result(ProcessingOutcome.INVALID)
        log.webhook_failed(outcome.error)
        return result(ProcessingOutcome.HANDLER_FAILED)

    except Exception as e:
        log.error(f"Unhandled webhook error: {e}", exc_info=True)
        db.session.rollback()
        if recorded:
            mark_failed(payload_hash, str(e) or type(e).__name__, log)
        return result(ProcessingOutcome.ERROR)
