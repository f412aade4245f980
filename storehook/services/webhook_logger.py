"""Structured, per-request logging for webhook deliveries.

Each delivery gets a WebhookLogger carrying a trace id and the request
context (topic, resource id, payload hash). Every record it emits includes
that context plus the elapsed time, so one grep on the trace id shows the
whole lifecycle: received -> skipped / processed / failed.

PII never goes to the log in clear: use mask_email / mask_phone / mask_name
for anything customer-identifying.
"""

import json
import logging
import re
import secrets
import time
from datetime import datetime, timezone

WEBHOOK_LOGGER_NAME = "storehook.webhooks"


# ──────────────────────────────────────────────
# PII masking
# ──────────────────────────────────────────────

def mask_email(email):
    """"john.doe@example.com" -> "jo***@example.com"."""
    if not email:
        return "[no-email]"
    local, _, domain = email.partition("@")
    if not domain:
        return "***@***"
    masked_local = local[:2] + "***" if len(local) > 2 else "***"
    return f"{masked_local}@{domain}"


def mask_phone(phone):
    """"+97455551234" -> "***1234"."""
    if not phone:
        return "[no-phone]"
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 4:
        return "****"
    return "***" + digits[-4:]


def mask_name(name):
    """"John Doe" -> "J*** D***"."""
    if not name:
        return "[no-name]"
    return " ".join(
        part[0] + "***" if part else "***" for part in name.split(" ")
    )


def generate_trace_id():
    """Short, sortable-ish id: wh_<ms since epoch, hex>_<random>."""
    return f"wh_{int(time.time() * 1000):x}_{secrets.token_hex(4)}"


# ──────────────────────────────────────────────
# Logger
# ──────────────────────────────────────────────

class WebhookLogger(logging.LoggerAdapter):
    """LoggerAdapter that stamps trace id + delivery context on every record.

    The structured fields travel on the LogRecord as `record.webhook`
    (a dict), which JsonLogFormatter flattens into the output line.
    """

    def __init__(self, logger=None, trace_id=None):
        super().__init__(logger or logging.getLogger(WEBHOOK_LOGGER_NAME), {})
        self.trace_id = trace_id or generate_trace_id()
        self.context = {}
        self._started = time.monotonic()

    def set_context(self, **ctx):
        self.context.update({k: v for k, v in ctx.items() if v is not None})
        return self

    def elapsed_ms(self):
        return int((time.monotonic() - self._started) * 1000)

    def process(self, msg, kwargs):
        fields = {"trace_id": self.trace_id, **self.context}
        fields["duration_ms"] = self.elapsed_ms()
        fields.update(kwargs.pop("fields", None) or {})
        extra = kwargs.setdefault("extra", {})
        extra["webhook"] = fields
        return msg, kwargs

    # --- Lifecycle events ---

    def webhook_received(self, topic, resource_id, payload_hash, shop_domain=None):
        self.set_context(
            topic=topic,
            resource_id=resource_id,
            payload_hash=payload_hash[:16],
            shop_domain=shop_domain,
        )
        self.info("Webhook received", fields={"outcome": "pending"})

    def webhook_processed(self):
        self.info("Webhook processed", fields={"outcome": "success"})

    def webhook_skipped(self, reason):
        self.info(f"Webhook skipped: {reason}", fields={"outcome": "skipped"})

    def webhook_failed(self, error):
        self.error(
            "Webhook processing failed",
            fields={"outcome": "failed", "error": str(error)},
        )

    def validation_failed(self, error):
        self.warning(
            f"Validation failed: {error}",
            fields={"outcome": "failed", "error": str(error)},
        )


def create_webhook_logger(trace_id=None):
    """Create a fresh logger for one webhook request."""
    return WebhookLogger(trace_id=trace_id)


# ──────────────────────────────────────────────
# Output
# ──────────────────────────────────────────────

class JsonLogFormatter(logging.Formatter):
    """Render each record as one JSON line for the log shipper."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "webhook", None) or {})
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(app):
    """Install the configured formatter on the root handler."""
    handler = logging.StreamHandler()
    if app.config.get("LOG_FORMAT") == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    package_logger = logging.getLogger("storehook")
    package_logger.handlers = [handler]
    package_logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    package_logger.propagate = app.testing  # let pytest's caplog see records
