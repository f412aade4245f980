"""Idempotency store — the webhook_events table.

insert_webhook_event() is the only place a delivery is admitted for
processing. It commits on its own so that a second delivery racing this one
sees the row (and gets DUPLICATE) even while our handler is still running.

mark_processed() / mark_failed() move a row out of "received" exactly once.
They never raise: the delivery has already been acknowledged by the time
they run, and a bookkeeping failure must not turn into a sender retry.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from storehook.extensions import db
from storehook.models.webhook_event import WebhookEvent
from storehook.services.storage import insert_or_ignore

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


def generate_payload_hash(raw_body):
    """SHA-256 hex of the raw body. The idempotency key."""
    return hashlib.sha256(raw_body).hexdigest()


@dataclass(frozen=True)
class InsertResult:
    is_new: bool
    event_id: str | None


def insert_webhook_event(topic, payload_hash, resource_id, raw_payload, log=None):
    """Record a delivery unless its payload hash has been seen before.

    Returns:
        InsertResult(is_new=True, event_id=<new id>) for a first delivery,
        InsertResult(is_new=False, event_id=<existing id>) for a duplicate.

    Raises:
        SQLAlchemyError: the store is unavailable. The caller decides what
        to do; nothing has been recorded.
    """
    log = log or logger
    event_id = insert_or_ignore(
        WebhookEvent,
        {
            "topic": topic,
            "payload_hash": payload_hash,
            "resource_id": resource_id,
            "raw_payload": raw_payload,
            "status": "received",
        },
        conflict_columns=["payload_hash"],
    )

    if event_id is None:
        existing_id = db.session.execute(
            db.select(WebhookEvent.id).filter_by(payload_hash=payload_hash)
        ).scalar_one_or_none()
        db.session.commit()
        log.debug(f"Payload hash already recorded as {existing_id}")
        return InsertResult(is_new=False, event_id=existing_id)

    db.session.commit()
    return InsertResult(is_new=True, event_id=event_id)


def _finish(payload_hash, values, log):
    try:
        updated = (
            WebhookEvent.query
            .filter_by(payload_hash=payload_hash, status="received")
            .update(values, synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        log.error(f"Failed to update webhook event status: {e}")
        return False

    if not updated:
        log.debug("No 'received' webhook event to update")
    return bool(updated)


def mark_processed(payload_hash, log=None):
    """received -> processed. Safe to call twice; a missing row is a no-op."""
    return _finish(
        payload_hash,
        {
            "status": "processed",
            "processed_at": datetime.now(timezone.utc),
        },
        log or logger,
    )


def mark_failed(payload_hash, error_message, log=None):
    """received -> failed, keeping the (truncated) error for operators."""
    return _finish(
        payload_hash,
        {
            "status": "failed",
            "error_message": str(error_message)[:MAX_ERROR_LENGTH],
            "processed_at": datetime.now(timezone.utc),
        },
        log or logger,
    )
