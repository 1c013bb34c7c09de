"""Tests for the webhooks blueprint.

Covers:
- Signature verification (missing, invalid, tampered body, stale timestamp)
- Missing webhook secret (500, nothing processed)
- Malformed payloads
- checkout.session.completed: success, duplicate delivery, missing
  metadata, unknown product
- payment_intent.payment_failed: latest failure reason wins
- checkout.session.expired
- Unknown event types (acknowledged, nothing written)
- Storage failure (500 so Stripe retries) and balance failure (200, gap logged)
"""

import json
import time
from unittest.mock import patch

from factories import checkout_completed, checkout_expired, payment_failed, sign_payload, to_body
from points_ledger.errors import BalanceIncrementFailed, StorageUnavailable
from points_ledger.extensions import db
from points_ledger.models.purchase_event import PurchaseEvent
from points_ledger.models.user_points import UserPoints


def _event_count():
    return PurchaseEvent.query.count()


def _balance(customer_id):
    row = db.session.get(UserPoints, customer_id)
    return row.total_points if row else 0


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client):
        """POST without Stripe-Signature -> 400, nothing written."""
        resp = client.post(
            "/api/webhooks/stripe",
            data=to_body(checkout_completed()),
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data
        assert _event_count() == 0

    def test_invalid_signature_returns_400(self, post_webhook):
        resp = post_webhook(
            checkout_completed(),
            headers={"Stripe-Signature": "t=123,v1=deadbeef"},
        )
        assert resp.status_code == 400
        assert b"Invalid signature" in resp.data
        assert _event_count() == 0

    def test_wrong_secret_rejected(self, post_webhook):
        resp = post_webhook(checkout_completed(), secret="whsec_someone_else")
        assert resp.status_code == 400
        assert _event_count() == 0

    def test_tampered_body_rejected_before_any_write(self, post_webhook):
        """Body altered after signing (points-worthy product swapped in) -> 400."""
        original = checkout_completed(product_id="prod_20euro")
        tampered = to_body(checkout_completed(product_id="prod_50euro"))

        resp = post_webhook(original, body=tampered)

        assert resp.status_code == 400
        assert _event_count() == 0
        assert UserPoints.query.count() == 0

    def test_reserialized_body_rejected(self, post_webhook):
        """Same JSON with different whitespace is different bytes -> 400."""
        payload = checkout_completed()
        resp = post_webhook(payload, body=json.dumps(payload, indent=2))
        assert resp.status_code == 400
        assert _event_count() == 0

    def test_stale_timestamp_rejected(self, post_webhook):
        """Signed 10 minutes ago, tolerance is 5 -> 400."""
        resp = post_webhook(checkout_completed(), timestamp=int(time.time()) - 600)
        assert resp.status_code == 400
        assert _event_count() == 0

    def test_missing_secret_returns_500(self, post_webhook, services):
        """No STRIPE_WEBHOOK_SECRET -> 500 and the event is not processed."""
        with patch.object(services.verifier, "secret", None):
            resp = post_webhook(checkout_completed())
        assert resp.status_code == 500
        assert b"Webhook secret not configured" in resp.data
        assert _event_count() == 0


class TestMalformedPayload:

    def test_non_json_body_returns_400(self, client):
        body = "not json at all"
        resp = client.post(
            "/api/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 400
        assert b"Malformed payload" in resp.data

    def test_event_without_data_object_returns_400(self, client):
        body = to_body({"id": "evt_1", "type": "checkout.session.completed"})
        resp = client.post(
            "/api/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 400

    def test_session_without_id_returns_400(self, post_webhook):
        """No session id to key the row on -> 400, not a retryable 500."""
        payload = checkout_completed()
        del payload["data"]["object"]["id"]

        resp = post_webhook(payload)

        assert resp.status_code == 400
        assert b"Malformed payload" in resp.data
        assert _event_count() == 0

    def test_non_object_metadata_returns_400(self, post_webhook):
        payload = checkout_completed(session_id="cs_badmeta")
        payload["data"]["object"]["metadata"] = "oops"

        resp = post_webhook(payload)

        assert resp.status_code == 400
        assert _event_count() == 0
        assert UserPoints.query.count() == 0

    def test_non_object_customer_details_returns_400(self, post_webhook):
        payload = checkout_completed(session_id="cs_baddetails", customer_id=None)
        payload["data"]["object"]["customer_details"] = ["payer@example.com"]

        resp = post_webhook(payload)

        assert resp.status_code == 400
        assert _event_count() == 0

    def test_non_object_payment_error_returns_400(self, post_webhook):
        payload = payment_failed(intent_id="pi_bad")
        payload["data"]["object"]["last_payment_error"] = "declined"

        resp = post_webhook(payload)

        assert resp.status_code == 400
        assert _event_count() == 0

    def test_null_metadata_is_missing_metadata(self, post_webhook):
        payload = checkout_completed(session_id="cs_nullmeta")
        payload["data"]["object"]["metadata"] = None

        resp = post_webhook(payload)

        assert resp.status_code == 200
        assert resp.get_json()["action"] == "missing_metadata"


class TestCheckoutCompleted:
    """Tests for checkout.session.completed."""

    def test_records_success_and_awards_points(self, post_webhook):
        resp = post_webhook(checkout_completed(session_id="cs_ok"))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["received"] is True
        assert data["action"] == "payment_success"
        assert data["points_credited"] == 20

        event = PurchaseEvent.query.filter_by(external_session_id="cs_ok").one()
        assert event.status == PurchaseEvent.PAYMENT_SUCCESS
        assert event.customer_id == "buyer@example.com"
        assert event.product_id == "prod_35euro"
        assert event.seller_id == 7
        assert event.points_awarded == 20
        assert event.details["price_paid"] == 35
        assert event.details["payment_intent"] == "pi_for_cs_ok"
        assert _balance("buyer@example.com") == 20

    def test_duplicate_delivery_credits_once(self, post_webhook):
        """Same notification delivered 5 times -> one row, one credit."""
        payload = checkout_completed(session_id="cs_dup")
        responses = [post_webhook(payload) for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)
        assert responses[0].get_json()["action"] == "payment_success"
        assert {r.get_json()["action"] for r in responses[1:]} == {"duplicate"}
        assert PurchaseEvent.query.filter_by(external_session_id="cs_dup").count() == 1
        assert _balance("buyer@example.com") == 20

    def test_redelivery_with_new_event_id_credits_once(self, post_webhook):
        """Manual replay creates a new evt_ id but the same session."""
        post_webhook(checkout_completed(session_id="cs_replay", event_id="evt_a"))
        post_webhook(checkout_completed(session_id="cs_replay", event_id="evt_b"))
        assert _event_count() == 1
        assert _balance("buyer@example.com") == 20

    def test_missing_seller_defaults_to_zero(self, post_webhook):
        post_webhook(checkout_completed(session_id="cs_noseller", seller_id=None))
        event = PurchaseEvent.query.filter_by(external_session_id="cs_noseller").one()
        assert event.seller_id == 0

    def test_missing_customer_id(self, post_webhook):
        """No customer_id in metadata -> ERROR_MISSING_METADATA, balance untouched."""
        resp = post_webhook(checkout_completed(session_id="cs_nocust", customer_id=None))
        assert resp.status_code == 200
        assert resp.get_json()["action"] == "missing_metadata"

        event = PurchaseEvent.query.filter_by(external_session_id="cs_nocust").one()
        assert event.status == PurchaseEvent.ERROR_MISSING_METADATA
        assert event.points_awarded == 0
        assert UserPoints.query.count() == 0

    def test_missing_customer_id_does_not_trust_payer_email_for_points(self, post_webhook):
        """The payer email is kept for audit but never credited."""
        post_webhook(checkout_completed(
            session_id="cs_payer", customer_id=None, payer_email="payer@example.com"
        ))
        event = PurchaseEvent.query.filter_by(external_session_id="cs_payer").one()
        assert event.customer_id == "payer@example.com"
        assert _balance("payer@example.com") == 0

    def test_missing_product_id(self, post_webhook):
        resp = post_webhook(checkout_completed(session_id="cs_noprod", product_id=None))
        assert resp.status_code == 200

        event = PurchaseEvent.query.filter_by(external_session_id="cs_noprod").one()
        assert event.status == PurchaseEvent.ERROR_MISSING_METADATA
        assert event.product_id is None
        assert event.points_awarded == 0
        assert _balance("buyer@example.com") == 0

    def test_unknown_product(self, post_webhook):
        resp = post_webhook(checkout_completed(session_id="cs_ghost", product_id="prod_ghost"))
        assert resp.status_code == 200
        assert resp.get_json()["action"] == "product_not_found"

        event = PurchaseEvent.query.filter_by(external_session_id="cs_ghost").one()
        assert event.status == PurchaseEvent.ERROR_PRODUCT_NOT_FOUND
        assert event.product_id == "prod_ghost"
        assert event.points_awarded == 0
        assert "prod_ghost" in event.details["error"]
        assert UserPoints.query.count() == 0


class TestPaymentFailed:
    """Tests for payment_intent.payment_failed."""

    def test_records_failure(self, post_webhook):
        resp = post_webhook(payment_failed(intent_id="pi_fail"))
        assert resp.status_code == 200

        event = PurchaseEvent.query.filter_by(external_session_id="pi_fail").one()
        assert event.status == PurchaseEvent.PAYMENT_FAILED
        assert event.customer_id == "buyer@example.com"
        assert event.product_id is None
        assert event.points_awarded == 0
        assert event.details["reason"] == "Your card was declined."
        assert event.details["latest_charge_id"] == "ch_for_pi_fail"
        assert event.details["amount"] == 3500
        assert UserPoints.query.count() == 0

    def test_latest_failure_reason_wins(self, post_webhook):
        post_webhook(payment_failed(intent_id="pi_twice", reason="Insufficient funds",
                                    event_id="evt_1"))
        post_webhook(payment_failed(intent_id="pi_twice", reason="Card expired",
                                    event_id="evt_2"))

        rows = PurchaseEvent.query.filter_by(external_session_id="pi_twice").all()
        assert len(rows) == 1
        assert rows[0].details["reason"] == "Card expired"

    def test_customer_from_expanded_customer_object(self, post_webhook):
        post_webhook(payment_failed(
            intent_id="pi_cust", receipt_email=None,
            customer={"id": "cus_1", "email": "expanded@example.com"},
        ))
        event = PurchaseEvent.query.filter_by(external_session_id="pi_cust").one()
        assert event.customer_id == "expanded@example.com"

    def test_unknown_customer_placeholder(self, post_webhook):
        post_webhook(payment_failed(intent_id="pi_anon", receipt_email=None, customer="cus_123"))
        event = PurchaseEvent.query.filter_by(external_session_id="pi_anon").one()
        assert event.customer_id == "unknown@example.com"


class TestCheckoutExpired:

    def test_expired_session_recorded_as_cancelled(self, post_webhook):
        resp = post_webhook(checkout_expired(session_id="cs_exp"))
        assert resp.status_code == 200
        event = PurchaseEvent.query.filter_by(external_session_id="cs_exp").one()
        assert event.status == PurchaseEvent.CANCELLED
        assert event.details["reason"] == "Checkout session expired"

    def test_expiry_never_demotes_success(self, post_webhook):
        post_webhook(checkout_completed(session_id="cs_both"))
        resp = post_webhook(checkout_expired(session_id="cs_both"))
        assert resp.get_json()["action"] == "already_succeeded"

        event = PurchaseEvent.query.filter_by(external_session_id="cs_both").one()
        assert event.status == PurchaseEvent.PAYMENT_SUCCESS
        assert _balance("buyer@example.com") == 20


class TestUnknownEvent:

    def test_unknown_event_accepted(self, post_webhook):
        """Unknown event type -> 200, nothing written."""
        payload = {
            "id": "evt_unknown_001",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1"}},
        }
        resp = post_webhook(payload)
        assert resp.status_code == 200
        assert resp.get_json()["action"] == "ignored"
        assert _event_count() == 0


class TestFailureHandling:

    def test_storage_unavailable_returns_500(self, post_webhook, services):
        """Ledger write fails -> 500 so Stripe redelivers."""
        with patch.object(
            services.store, "upsert_event", side_effect=StorageUnavailable("db down")
        ):
            resp = post_webhook(checkout_completed(session_id="cs_down"))
        assert resp.status_code == 500
        assert _balance("buyer@example.com") == 0

    def test_redelivery_after_storage_failure_succeeds(self, post_webhook, services):
        payload = checkout_completed(session_id="cs_retry")
        with patch.object(
            services.store, "upsert_event", side_effect=StorageUnavailable("db down")
        ):
            assert post_webhook(payload).status_code == 500

        resp = post_webhook(payload)
        assert resp.status_code == 200
        assert _balance("buyer@example.com") == 20

    def test_balance_failure_keeps_success_and_acknowledges(self, post_webhook, services):
        """Increment fails after the ledger commit -> 200, row stays PAYMENT_SUCCESS."""
        failure = BalanceIncrementFailed("buyer@example.com", 20, "cs_gap")
        with patch.object(services.projector, "apply_points", side_effect=failure):
            resp = post_webhook(checkout_completed(session_id="cs_gap"))

        assert resp.status_code == 200
        assert resp.get_json()["action"] == "balance_increment_failed"
        event = PurchaseEvent.query.filter_by(external_session_id="cs_gap").one()
        assert event.status == PurchaseEvent.PAYMENT_SUCCESS
        assert _balance("buyer@example.com") == 0

        # Redelivery does not retry the increment: the gap is for reconciliation.
        post_webhook(checkout_completed(session_id="cs_gap"))
        assert _balance("buyer@example.com") == 0
