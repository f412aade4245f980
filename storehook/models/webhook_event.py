"""Webhook event model (idempotency table).

Every authenticated delivery for a known topic is recorded by the SHA-256 of
its raw body. The unique payload_hash is what turns Shopify's at-least-once
delivery into exactly-once processing: a second insert with the same hash is
a no-op and the endpoint acknowledges the duplicate without re-running the
handler.

Rows are never deleted here. status moves out of "received" exactly once.
"""

import uuid

from storehook.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    # -- Valid statuses --
    STATUSES = ["received", "processed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    topic = db.Column(db.String(255), nullable=False)  # e.g. "orders/paid"
    payload_hash = db.Column(
        db.String(64), unique=True, nullable=False
    )  # sha256 hex of the raw body
    resource_id = db.Column(
        db.String(255), nullable=True
    )  # upstream order / checkout / customer id
    raw_payload = db.Column(db.JSON, nullable=True)
    status = db.Column(
        db.String(20), default="received", nullable=False
    )  # received | processed | failed
    error_message = db.Column(db.Text, nullable=True)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.Index("ix_webhook_events_status", "status"),
        db.Index("ix_webhook_events_received_at", "received_at"),
    )

    def to_dict(self):
        """Operator-facing representation (used by /webhooks/recent)."""
        return {
            "id": self.id,
            "topic": self.topic,
            "resource_id": self.resource_id,
            "payload_hash": self.payload_hash,
            "status": self.status,
            "error_message": self.error_message,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }

    def __repr__(self):
        return f"<WebhookEvent {self.topic} {self.payload_hash[:12]} ({self.status})>"
