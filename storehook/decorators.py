"""
Custom route decorators for access control.

- operator_token_required: ensures the request carries the operator bearer
  token (WEBHOOK_ADMIN_TOKEN). With no token configured the route is
  disabled (404).
"""

import hmac
from functools import wraps

from flask import abort, current_app, request


def operator_token_required(f):
    """Require `Authorization: Bearer <WEBHOOK_ADMIN_TOKEN>`."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("WEBHOOK_ADMIN_TOKEN")
        if not expected:
            abort(404)

        scheme, _, supplied = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            supplied.strip().encode(), expected.encode()
        ):
            abort(401)

        return f(*args, **kwargs)

    return decorated
