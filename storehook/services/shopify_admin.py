"""Shopify Admin REST API — webhook subscription management.

Used by the `flask register-webhooks` command only; nothing on the request
path talks to Shopify.
"""

import logging

import requests

logger = logging.getLogger(__name__)

ADMIN_API_TIMEOUT = 10  # seconds


class ShopifyAdminError(Exception):
    """Shopify rejected a request or could not be reached."""


def _admin_url(shop_domain, api_version, path):
    return f"https://{shop_domain}/admin/api/{api_version}/{path}"


def _headers(access_token):
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


def list_webhooks(shop_domain, access_token, api_version):
    """Return the shop's current webhook subscriptions."""
    try:
        resp = requests.get(
            _admin_url(shop_domain, api_version, "webhooks.json"),
            headers=_headers(access_token),
            timeout=ADMIN_API_TIMEOUT,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise ShopifyAdminError(f"Failed to list webhooks: {e}") from e
    return resp.json().get("webhooks", [])


def register_webhook(shop_domain, access_token, api_version, topic, address):
    """Subscribe `address` to `topic`. Returns the created subscription dict.

    Raises:
        ShopifyAdminError: on transport failure or a non-2xx answer. Shopify's
        error body (e.g. "address for this topic has already been taken") is
        included in the message.
    """
    try:
        resp = requests.post(
            _admin_url(shop_domain, api_version, "webhooks.json"),
            headers=_headers(access_token),
            json={"webhook": {"topic": topic, "address": address, "format": "json"}},
            timeout=ADMIN_API_TIMEOUT,
        )
    except requests.RequestException as e:
        raise ShopifyAdminError(f"{topic}: {e}") from e

    if not resp.ok:
        raise ShopifyAdminError(f"{topic}: HTTP {resp.status_code} {resp.text[:200]}")

    webhook = resp.json().get("webhook", {})
    logger.info(f"Registered {topic} -> {address} (id {webhook.get('id')})")
    return webhook
