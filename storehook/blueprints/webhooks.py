"""Webhooks blueprint — /webhooks/*

Receives Shopify webhook deliveries. The raw body is required for
signature verification, so it is read with get_data() and never parsed by
Flask.

Route Map:
  POST /webhooks/shopify  — ingest one delivery (401 only on bad signature)
  GET  /webhooks/shopify  — capability document for health checks
  GET  /webhooks/recent   — newest webhook_events rows (operator token)
"""

import logging

from flask import Blueprint, jsonify, request

from storehook.decorators import operator_token_required
from storehook.extensions import limiter
from storehook.models.webhook_event import WebhookEvent
from storehook.services.shopify_service import health_document, process_webhook
from storehook.services.signature import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

TOPIC_HEADER = "X-Shopify-Topic"
SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
TRACE_HEADER = "X-Webhook-Trace-Id"

RECENT_DEFAULT_LIMIT = 50
RECENT_MAX_LIMIT = 100


@webhooks_bp.route("/shopify", methods=["POST"])
def shopify_webhook():
    """Receive and process one Shopify webhook delivery.

    1. Get raw body (required for signature verification)
    2. Hand off to process_webhook (verify, dedupe, route, handle)
    3. Answer with the status its outcome maps to
    """
    result = process_webhook(
        request.get_data(cache=False),
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(TOPIC_HEADER),
        shop_domain=request.headers.get(SHOP_DOMAIN_HEADER),
    )

    response = jsonify(result.body)
    response.status_code = result.http_status
    response.headers[TRACE_HEADER] = result.trace_id
    return response


@webhooks_bp.route("/shopify", methods=["GET"])
def shopify_webhook_health():
    return jsonify(health_document())


@webhooks_bp.route("/recent", methods=["GET"])
@limiter.limit("30 per minute")
@operator_token_required
def recent_events():
    """Newest webhook events, optionally filtered by status.

    Query params:
        limit: 1-100, default 50.
        status: received | processed | failed.
    """
    limit = request.args.get("limit", RECENT_DEFAULT_LIMIT, type=int)
    limit = max(1, min(limit, RECENT_MAX_LIMIT))

    query = WebhookEvent.query
    status = request.args.get("status")
    if status:
        if status not in WebhookEvent.STATUSES:
            return jsonify(error=f"Unknown status: {status}"), 400
        query = query.filter_by(status=status)

    events = (
        query.order_by(WebhookEvent.received_at.desc())
        .limit(limit)
        .all()
    )
    return jsonify(events=[e.to_dict() for e in events], count=len(events))
