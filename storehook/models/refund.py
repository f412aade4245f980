"""Refund model.

Refunds reference their order by Shopify order id, not by foreign key: a
refunds/create delivery may arrive before the order row exists. order_id is
filled in when the order is already known.
"""

import uuid

from storehook.extensions import db


class Refund(db.Model):
    __tablename__ = "refunds"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    shopify_refund_id = db.Column(db.String(255), unique=True, nullable=False)
    shopify_order_id = db.Column(db.String(255), nullable=False, index=True)
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True
    )
    amount_minor = db.Column(db.BigInteger, default=0, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)
    refund_line_items = db.Column(db.JSON, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    raw_payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<Refund {self.shopify_refund_id} order={self.shopify_order_id}>"
