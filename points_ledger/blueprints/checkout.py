"""Checkout blueprint — /api/checkout_sessions

Creates a Stripe Checkout Session for a catalog product. The session
metadata carries customer_id / product_id / seller_id to the webhook.
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from points_ledger.errors import ProductUnknown
from points_ledger.extensions import limiter
from points_ledger.services import get_services

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def _checkout_rate_limit():
    return current_app.config.get("CHECKOUT_RATE_LIMIT", "30 per minute")


@checkout_bp.route("/checkout_sessions", methods=["POST"])
@limiter.limit(_checkout_rate_limit)
def create_checkout_session():
    """Create a Checkout Session.

    Body: { customer_id, product_id, seller_id? }
    Returns: { session_id, url }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    customer_id = str(data.get("customer_id") or "").strip()
    product_id = str(data.get("product_id") or "").strip()
    raw_seller_id = data.get("seller_id")

    if not customer_id or not product_id:
        return jsonify({"error": "customer_id and product_id are required"}), 400

    seller_id = _as_int(raw_seller_id if raw_seller_id not in (None, "") else 0)
    if seller_id is None:
        return jsonify({"error": "seller_id must be an integer"}), 400

    try:
        session_id, url = get_services().checkout.create_checkout_session(
            customer_id=customer_id,
            product_id=product_id,
            seller_id=seller_id,
        )
    except ProductUnknown:
        return jsonify({"error": "Invalid Product ID"}), 404
    except stripe.StripeError as e:
        logger.error(f"Stripe session creation error: {e}", exc_info=True)
        return jsonify({"error": "Failed to create Stripe session."}), 502

    return jsonify({"session_id": session_id, "url": url}), 200


def _as_int(value):
    """int(value), or None for bools, fractional floats and non-numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
