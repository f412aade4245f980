"""Checkout models.

- Checkout: one row per Shopify checkout session. completed_at is null while
  the checkout is pending or abandoned.
- CheckoutItem: line items. Shopify sends the full cart on every update, so
  the children are replaced wholesale rather than diffed.

All money columns are integer minor units (fils / cents).
"""

import uuid

from storehook.extensions import db


class Checkout(db.Model):
    __tablename__ = "checkouts"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    shopify_checkout_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    shopify_checkout_token = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=True
    )  # null until a customer can be matched
    email = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)

    subtotal_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_tax_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_shipping_minor = db.Column(db.BigInteger, default=0, nullable=False)
    total_price_minor = db.Column(db.BigInteger, default=0, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    abandoned_checkout_url = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
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
        db.Index("ix_checkouts_email", "email"),
    )

    # --- Relationships ---
    customer = db.relationship("Customer", back_populates="checkouts")
    items = db.relationship(
        "CheckoutItem",
        back_populates="checkout",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    @property
    def is_abandoned(self):
        return self.completed_at is None

    def __repr__(self):
        return f"<Checkout {self.shopify_checkout_id}>"


class CheckoutItem(db.Model):
    __tablename__ = "checkout_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    checkout_id = db.Column(
        db.String(36),
        db.ForeignKey("checkouts.id", ondelete="CASCADE"),
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
    measurements = db.Column(db.JSON, nullable=True)
    properties = db.Column(db.JSON, nullable=True)

    # --- Relationships ---
    checkout = db.relationship("Checkout", back_populates="items")

    def __repr__(self):
        return f"<CheckoutItem {self.product_name} x{self.quantity}>"
