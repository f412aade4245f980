"""Commerce service — customers, checkouts, orders, refunds, order timeline.

Every write is keyed by the upstream (Shopify) id behind a unique
constraint, so replaying the same business event updates the same row
instead of duplicating it, independently of webhook-level dedup.

New rows go through storage.insert_or_ignore(); when the row already exists
it is loaded with SELECT ... FOR UPDATE and updated in Python.

Functions flush but do NOT commit. The caller commits.
"""

import logging
from datetime import datetime, timezone

from storehook.extensions import db
from storehook.models.checkout import Checkout, CheckoutItem
from storehook.models.customer import Customer
from storehook.models.order import Order, OrderEvent, OrderItem
from storehook.models.refund import Refund
from storehook.services.storage import insert_or_ignore
from storehook.services.webhook_logger import mask_email, mask_name, mask_phone

logger = logging.getLogger(__name__)


class DataLayerError(Exception):
    """A write could not be applied for a reason other than 'already exists'."""


# Shopify financial_status -> Order.status
FINANCIAL_STATUS_MAP = {
    "pending": "pending",
    "authorized": "pending",
    "partially_paid": "pending",
    "paid": "paid",
    "partially_refunded": "paid",
    "refunded": "returned",
    "voided": "cancelled",
}


def map_order_status(financial_status):
    return FINANCIAL_STATUS_MAP.get(financial_status or "", "pending")


# ──────────────────────────────────────────────
# Customers
# ──────────────────────────────────────────────

def find_customer(info):
    """Existing customer id by external id, then by phone. None if unknown."""
    if info.external_id:
        customer_id = db.session.execute(
            db.select(Customer.id).filter_by(external_id=info.external_id)
        ).scalar_one_or_none()
        if customer_id:
            return customer_id
    if info.phone:
        return db.session.execute(
            db.select(Customer.id).filter_by(phone=info.phone)
        ).scalar_one_or_none()
    return None


def find_or_create_customer(info, measurements=None):
    """Return the id of the customer described by `info`, creating it if new.

    Existing customers are never modified. Without an external id or a
    phone there is nothing reliable to key on, and None is returned.

    Args:
        info: extractors.CustomerInfo.
        measurements: Optional measurement profile stored on a NEW customer.
    """
    if not info.external_id and not info.phone:
        return None

    customer_id = find_customer(info)
    if customer_id:
        return customer_id

    # Conflicts on either external_id or phone mean someone else created it
    customer_id = insert_or_ignore(Customer, {
        "external_id": info.external_id,
        "full_name": info.full_name or "Shopify Customer",
        "phone": info.phone,
        "email": info.email,
        "notes": info.notes,
        "measurements": measurements,
        "shopify_total_spend_minor": info.total_spent_minor or 0,
        "tags": info.tags[:500] if info.tags else None,
        "accepts_marketing": info.accepts_marketing,
    })
    if customer_id:
        logger.info(
            f"Created customer {customer_id} "
            f"(name={mask_name(info.full_name)}, phone={mask_phone(info.phone)}, "
            f"email={mask_email(info.email)})"
        )
        return customer_id

    customer_id = find_customer(info)
    if not customer_id:
        raise DataLayerError("Customer insert conflicted but no matching customer found")
    return customer_id


# ──────────────────────────────────────────────
# Checkouts
# ──────────────────────────────────────────────

def upsert_checkout(data):
    """Insert or update a checkout keyed by shopify_checkout_id.

    Returns the checkout id.
    """
    checkout_id = insert_or_ignore(
        Checkout, data, conflict_columns=["shopify_checkout_id"]
    )
    if checkout_id:
        return checkout_id

    checkout = (
        Checkout.query
        .filter_by(shopify_checkout_id=data["shopify_checkout_id"])
        .with_for_update()
        .one_or_none()
    )
    if checkout is None:
        raise DataLayerError(
            f"Checkout {data['shopify_checkout_id']} conflicted but was not found"
        )

    for key, value in data.items():
        if key == "customer_id" and value is None:
            continue  # never unlink
        setattr(checkout, key, value)
    db.session.flush()
    return checkout.id


def replace_checkout_items(checkout_id, items):
    """Swap the checkout's line items for a new full snapshot."""
    CheckoutItem.query.filter_by(checkout_id=checkout_id).delete(
        synchronize_session=False
    )
    db.session.add_all(
        CheckoutItem(checkout_id=checkout_id, **item.as_row()) for item in items
    )
    db.session.flush()


def find_latest_checkout_phone(email):
    """Most recent phone seen on a checkout for this email, or None."""
    if not email:
        return None
    return db.session.execute(
        db.select(Checkout.phone)
        .filter(Checkout.email == email, Checkout.phone.isnot(None))
        .order_by(Checkout.updated_at.desc())
        .limit(1)
    ).scalar_one_or_none()


# ──────────────────────────────────────────────
# Orders
# ──────────────────────────────────────────────

def get_order_id(shopify_order_id):
    return db.session.execute(
        db.select(Order.id).filter_by(shopify_order_id=shopify_order_id)
    ).scalar_one_or_none()


def _load_order_for_update(shopify_order_id):
    return (
        Order.query
        .filter_by(shopify_order_id=shopify_order_id)
        .with_for_update()
        .one_or_none()
    )


def upsert_order(data):
    """Insert or update an order keyed by shopify_order_id.

    status is derived from financial_status unless given. An order never
    moves to a lower-ranked status: when the stored status outranks the
    incoming one, the stored status, financial_status and paid amount are
    kept and everything else is refreshed. placed_at is only set on insert
    and an existing customer link is never cleared.

    Returns the order id.
    """
    data = dict(data)
    data.setdefault("status", map_order_status(data.get("financial_status")))

    order_id = insert_or_ignore(Order, data, conflict_columns=["shopify_order_id"])
    if order_id:
        return order_id

    order = _load_order_for_update(data["shopify_order_id"])
    if order is None:
        raise DataLayerError(
            f"Order {data['shopify_order_id']} conflicted but was not found"
        )

    current_rank = Order.STATUS_RANK.get(order.status, 0)
    incoming_rank = Order.STATUS_RANK.get(data["status"], 0)
    keep = {"placed_at", "shopify_order_id"}
    if current_rank > incoming_rank:
        keep |= {"status", "financial_status", "paid_amount_minor"}
        logger.info(
            f"Order {order.shopify_order_id}: keeping status {order.status} "
            f"over incoming {data['status']}"
        )
    if data.get("customer_id") is None:
        keep.add("customer_id")

    for key, value in data.items():
        if key not in keep:
            setattr(order, key, value)
    db.session.flush()
    return order.id


def replace_order_items(order_id, items):
    """Swap the order's line items for a new full snapshot."""
    OrderItem.query.filter_by(order_id=order_id).delete(synchronize_session=False)
    db.session.add_all(
        OrderItem(order_id=order_id, **item.as_row()) for item in items
    )
    db.session.flush()


def mark_order_paid(shopify_order_id, paid_amount_minor):
    """Record payment. Returns False if the order does not exist.

    Only a pending order moves to "paid"; a cancelled or returned order
    keeps its status but still records the payment.
    """
    order = _load_order_for_update(shopify_order_id)
    if order is None:
        return False

    order.financial_status = "paid"
    order.paid_amount_minor = paid_amount_minor
    if order.status == "pending":
        order.status = "paid"
    db.session.flush()
    return True


def mark_order_cancelled(shopify_order_id, cancel_reason=None, cancelled_at=None,
                         financial_status=None):
    """Cancel an order. Returns False if the order does not exist."""
    order = _load_order_for_update(shopify_order_id)
    if order is None:
        return False

    order.status = "cancelled"
    order.financial_status = financial_status or "voided"
    order.cancel_reason = cancel_reason
    order.cancelled_at = cancelled_at or datetime.now(timezone.utc)
    db.session.flush()
    return True


# ──────────────────────────────────────────────
# Refunds & timeline
# ──────────────────────────────────────────────

def insert_refund(data):
    """Record a refund once per shopify_refund_id. Returns the refund id.

    The parent order is linked when it is already known; otherwise the
    refund is kept by shopify_order_id alone.
    """
    values = dict(data)
    values.setdefault("order_id", get_order_id(values["shopify_order_id"]))

    refund_id = insert_or_ignore(Refund, values, conflict_columns=["shopify_refund_id"])
    if refund_id:
        return refund_id

    refund = Refund.query.filter_by(
        shopify_refund_id=values["shopify_refund_id"]
    ).one_or_none()
    if refund is None:
        raise DataLayerError(
            f"Refund {values['shopify_refund_id']} conflicted but was not found"
        )
    if refund.order_id is None and values["order_id"]:
        refund.order_id = values["order_id"]
        db.session.flush()
    return refund.id


def insert_order_event(shopify_order_id, event_type, topic, payload_hash,
                       metadata=None, occurred_at=None):
    """Append one entry to an order's timeline."""
    if event_type not in OrderEvent.EVENT_TYPES:
        raise DataLayerError(f"Unknown order event type: {event_type}")

    event = OrderEvent(
        shopify_order_id=shopify_order_id,
        order_id=get_order_id(shopify_order_id),
        event_type=event_type,
        topic=topic,
        payload_hash=payload_hash,
        metadata_=metadata or {},
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )
    db.session.add(event)
    db.session.flush()
    return event.id
