"""Webhooks blueprint — /api/webhooks/stripe

Receives Stripe webhook events. The raw body is verified before anything
is parsed or written.

Response contract (what Stripe does next):
- 200: consumed, no redelivery
- 400: signature or payload rejected, redelivering the same bytes won't help
- 500: misconfiguration or storage failure, Stripe redelivers
"""

import logging

from flask import Blueprint, request, jsonify

from points_ledger.errors import (
    MalformedNotification,
    SecretNotConfigured,
    SignatureInvalid,
    StorageUnavailable,
)
from points_ledger.services import get_services

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Receive and process a Stripe webhook event.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to the event processor (idempotent per session id)
    4. Return 200 to acknowledge receipt
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")
    services = get_services()

    logger.info(f"Stripe webhook received: {len(payload)} bytes")

    # --- Verify signature ---
    try:
        notification = services.verifier.verify(payload, sig_header)
    except SecretNotConfigured:
        return jsonify({"error": "Webhook secret not configured."}), 500
    except SignatureInvalid as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        if not sig_header:
            return jsonify({"error": "Missing signature"}), 400
        return jsonify({"error": "Invalid signature"}), 400
    except MalformedNotification as e:
        logger.warning(f"Malformed webhook payload: {e}")
        return jsonify({"error": "Malformed payload"}), 400

    # --- Process event ---
    try:
        result = services.processor.process(notification)
    except MalformedNotification as e:
        logger.warning(f"Malformed webhook event {notification.id}: {e}")
        return jsonify({"error": "Malformed payload"}), 400
    except StorageUnavailable as e:
        logger.error(
            f"Error processing webhook event {notification.id} (type: {notification.type}): {e}"
        )
        return jsonify({"error": "Webhook processing error"}), 500

    return jsonify(result.to_dict()), 200
