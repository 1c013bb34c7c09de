"""
Custom route decorators for access control.

- admin_secret_required: the ledger read APIs are called by the admin
  dashboard with a shared secret in the X-Admin-Secret header.
"""

import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)

ADMIN_SECRET_HEADER = "X-Admin-Secret"


def admin_secret_required(f):
    """Require X-Admin-Secret to match ADMIN_API_SECRET."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_SECRET")
        provided = request.headers.get(ADMIN_SECRET_HEADER, "")

        if not expected:
            logger.error("ADMIN_API_SECRET is not configured; refusing admin request")
            return jsonify({"error": "Unauthorized: Missing or invalid secret."}), 401

        if not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning(f"Unauthorized admin request to {request.path}")
            return jsonify({"error": "Unauthorized: Missing or invalid secret."}), 401

        return f(*args, **kwargs)

    return decorated
