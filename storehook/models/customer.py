"""Customer model.

Shared with the rest of the application (dashboards, loyalty tiers). The
webhook pipeline only inserts-if-absent and links checkouts/orders by id; it
never overwrites profile fields or recomputes the aggregates.
"""

import uuid

from storehook.extensions import db


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # Shopify customer id
    full_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(
        db.String(50), unique=True, nullable=True
    )  # normalized, with dial code
    email = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    tags = db.Column(db.String(500), nullable=True)
    accepts_marketing = db.Column(db.Boolean, default=False, nullable=False)

    # --- Aggregates (maintained outside the webhook pipeline) ---
    total_spend_minor = db.Column(db.BigInteger, default=0, nullable=False)
    shopify_total_spend_minor = db.Column(db.BigInteger, default=0, nullable=False)
    order_count = db.Column(db.Integer, default=0, nullable=False)
    status_tier = db.Column(db.String(50), nullable=True)

    # Measurement profile captured when the customer was first seen
    measurements = db.Column(db.JSON, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_customers_email", "email"),
    )

    # --- Relationships ---
    orders = db.relationship("Order", back_populates="customer", lazy="dynamic")
    checkouts = db.relationship(
        "Checkout", back_populates="customer", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Customer {self.id} ext={self.external_id}>"
