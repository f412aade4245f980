"""Order models.

- Order: one row per Shopify order, keyed by shopify_order_id.
- OrderItem: line items, replaced wholesale on every order update.
- OrderEvent: append-only timeline (created / paid / cancelled / refunded)
  used for audit and the order history view. Never updated or deleted.

All money columns are integer minor units (fils / cents).
"""

import uuid

from storehook.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    # -- Valid statuses --
    STATUSES = ["pending", "paid", "returned", "cancelled"]

    # -- Status precedence: a replayed or late event never moves an order
    #    to a lower rank (e.g. a late orders/create after orders/paid) --
    STATUS_RANK = {
        "pending": 0,
        "paid": 1,
        "returned": 2,
        "cancelled": 2,
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    shopify_order_id = db.Column(db.String(255), unique=True, nullable=False)
    order_number = db.Column(db.String(50), nullable=True)  # e.g. "1001"
    order_name = db.Column(db.String(50), nullable=True)  # e.g. "#1001"
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=True
    )
    source = db.Column(db.String(50), default="shopify", nullable=False)
    status = db.Column(
        db.String(50), default="pending", nullable=False
    )  # pending | paid | returned | cancelled
    financial_status = db.Column(db.String(50), nullable=True)
    fulfillment_status = db.Column(db.String(50), nullable=True)
    currency = db.Column(db.String(3), nullable=False)

    subtotal_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_tax_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_shipping_minor = db.Column(db.BigInteger, default=0, nullable=False)
    paid_amount_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_amount_minor = db.Column(db.BigInteger, default=0, nullable=False)

    shipping_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    placed_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # Shopify's created_at
    raw_payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_customer_id", "customer_id"),
    )

    # --- Relationships ---
    customer = db.relationship("Customer", back_populates="orders")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )
    events = db.relationship("OrderEvent", back_populates="order", lazy="dynamic")

    def __repr__(self):
        return f"<Order {self.shopify_order_id} ({self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shopify_line_item_id = db.Column(db.String(255), nullable=True)
    product_name = db.Column(db.String(500), nullable=False, default="")
    variant_title = db.Column(db.String(255), nullable=True)
    sku = db.Column(db.String(255), nullable=True)
    size = db.Column(db.String(100), nullable=True)
    color = db.Column(db.String(100), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_minor = db.Column(db.BigInteger, nullable=False, default=0)
    line_total_minor = db.Column(db.BigInteger, nullable=False, default=0)
    measurements = db.Column(db.JSON, nullable=True)  # snapshot at order time
    properties = db.Column(db.JSON, nullable=True)

    # --- Relationships ---
    order = db.relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} x{self.quantity}>"


class OrderEvent(db.Model):
    __tablename__ = "order_events"

    # -- Valid event types --
    EVENT_TYPES = [
        "order_created",
        "order_paid",
        "order_cancelled",
        "refund_created",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    shopify_order_id = db.Column(db.String(255), nullable=False, index=True)
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True
    )  # null when the order row lags behind the event
    event_type = db.Column(db.String(50), nullable=False)
    topic = db.Column(db.String(255), nullable=False)
    payload_hash = db.Column(db.String(64), nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid the declarative attribute clash
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="events")

    def __repr__(self):
        return f"<OrderEvent {self.event_type} order={self.shopify_order_id}>"
