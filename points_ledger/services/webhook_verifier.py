"""Webhook verifier — authenticate Stripe notifications.

The signature is checked against the raw request body exactly as received.
Only after it verifies is the body parsed into a WebhookNotification.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe

from points_ledger.errors import (
    MalformedNotification,
    SecretNotConfigured,
    SignatureInvalid,
)

logger = logging.getLogger(__name__)


@dataclass
class WebhookNotification:
    id: str
    type: str
    data_object: Dict[str, Any] = field(default_factory=dict)
    created: Optional[int] = None

    @classmethod
    def from_dict(cls, data):
        """Build from a decoded Stripe event. Raises MalformedNotification."""
        if not isinstance(data, dict):
            raise MalformedNotification("Event payload is not a JSON object")
        event_id = data.get("id")
        event_type = data.get("type")
        if not event_id or not event_type:
            raise MalformedNotification("Event is missing id or type")
        obj = (data.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise MalformedNotification(f"Event {event_id} has no data.object")
        object_id = obj.get("id")
        if not isinstance(object_id, str) or not object_id:
            raise MalformedNotification(f"Event {event_id} data.object has no id")
        return cls(id=event_id, type=event_type, data_object=obj,
                   created=data.get("created"))


class WebhookVerifier:
    """Checks Stripe-Signature headers with a shared signing secret."""

    def __init__(self, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, payload, sig_header):
        """Verify the raw payload and return the parsed notification.

        Raises:
            SecretNotConfigured: no signing secret was configured.
            SignatureInvalid: header missing, signature mismatch, or the
                signed timestamp is outside the tolerance window.
            MalformedNotification: the body verified but is not a Stripe event.
        """
        if not self.secret:
            logger.error("Stripe webhook secret is not configured")
            raise SecretNotConfigured("STRIPE_WEBHOOK_SECRET is not set")
        if not sig_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedNotification("Body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, sig_header, self.secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(str(e)) from e

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise MalformedNotification(f"Invalid JSON payload: {e}") from e

        return WebhookNotification.from_dict(data)
