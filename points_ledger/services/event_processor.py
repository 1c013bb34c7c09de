"""Event processor — turns verified Stripe notifications into ledger writes.

Dispatch:
- checkout.session.completed    -> PAYMENT_SUCCESS (+ points) or an ERROR_* row
- payment_intent.payment_failed -> PAYMENT_FAILED, keyed by the payment intent
- checkout.session.expired      -> CANCELLED (never demotes a success)
- anything else                 -> acknowledged, nothing written

Attempt context (customer, product, seller) is read from the session
metadata set by the checkout initiator, never from the payer's own fields.

Points are credited only when EventStore.upsert_event reports that its own
write moved the session into PAYMENT_SUCCESS, so redelivered notifications
never credit twice. StorageUnavailable propagates to the caller (retry);
BalanceIncrementFailed is logged as a reconciliation gap and swallowed
because the success row is already committed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from points_ledger.errors import (
    BalanceIncrementFailed,
    MalformedNotification,
    MetadataMissing,
    ProductUnknown,
)
from points_ledger.models.purchase_event import PurchaseEvent
from points_ledger.services.checkout_service import (
    METADATA_CUSTOMER_ID,
    METADATA_PRODUCT_ID,
    METADATA_SELLER_ID,
)

logger = logging.getLogger(__name__)

# Recorded when Stripe gives us no way to identify the payer.
UNKNOWN_CUSTOMER = "unknown@example.com"


@dataclass
class ProcessingResult:
    action: str
    external_session_id: Optional[str] = None
    status: Optional[str] = None
    points_credited: int = 0
    balance: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self):
        body = {"received": True, "action": self.action}
        if self.external_session_id:
            body["external_session_id"] = self.external_session_id
        if self.status:
            body["status"] = self.status
        if self.points_credited:
            body["points_credited"] = self.points_credited
        if self.error:
            body["error"] = self.error
        return body


def _mapping(obj, key):
    """obj[key] as a dict; absent or null is empty, any other type is malformed."""
    value = obj.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedNotification(
            f"{obj.get('object', 'object')} {obj.get('id')}: {key} is not an object"
        )
    return value


def parse_seller_id(raw):
    """Seller ids travel as metadata strings; anything unparseable is 0."""
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        logger.warning(f"Ignoring non-integer seller_id {raw!r}")
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer seller_id {raw!r}")
        return 0


class EventProcessor:
    """State machine applied to each verified notification."""

    def __init__(self, store, projector, catalog):
        self.store = store
        self.projector = projector
        self.catalog = catalog
        self._handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "checkout.session.expired": self._handle_checkout_expired,
        }

    def process(self, notification):
        """Apply a WebhookNotification to the ledger.

        Returns a ProcessingResult.
        Raises StorageUnavailable when the ledger write fails, and
        MalformedNotification when a nested field has the wrong shape.
        """
        handler = self._handlers.get(notification.type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {notification.type} ({notification.id})")
            return ProcessingResult(action="ignored")
        return handler(notification.data_object)

    # ──────────────────────────────────────────────
    # checkout.session.completed
    # ──────────────────────────────────────────────

    def _handle_checkout_completed(self, session):
        session_id = session.get("id")
        metadata = _mapping(session, "metadata")

        customer_id = metadata.get(METADATA_CUSTOMER_ID)
        product_id = metadata.get(METADATA_PRODUCT_ID)
        seller_id = parse_seller_id(metadata.get(METADATA_SELLER_ID))

        logger.info(f"Checkout session completed: {session_id}")

        try:
            product = self._resolve(customer_id, product_id)
        except MetadataMissing as e:
            logger.error(f"Checkout session {session_id} missing customer_id or product_id in metadata")
            # The payer's email is kept for the audit trail only.
            fallback = _mapping(session, "customer_details").get("email")
            result = self.store.upsert_event(
                external_session_id=session_id,
                customer_id=customer_id or fallback or UNKNOWN_CUSTOMER,
                status=PurchaseEvent.ERROR_MISSING_METADATA,
                product_id=product_id,
                seller_id=seller_id,
                details={"error": str(e)},
                preserve_success=True,
            )
            return ProcessingResult(
                action="missing_metadata",
                external_session_id=session_id,
                status=result.event.status,
                error=str(e),
            )
        except ProductUnknown as e:
            logger.error(f"Product with ID {product_id} not found for session {session_id}")
            result = self.store.upsert_event(
                external_session_id=session_id,
                customer_id=customer_id,
                status=PurchaseEvent.ERROR_PRODUCT_NOT_FOUND,
                product_id=product_id,
                seller_id=seller_id,
                details={"error": str(e)},
                preserve_success=True,
            )
            return ProcessingResult(
                action="product_not_found",
                external_session_id=session_id,
                status=result.event.status,
                error=str(e),
            )

        result = self.store.upsert_event(
            external_session_id=session_id,
            customer_id=customer_id,
            status=PurchaseEvent.PAYMENT_SUCCESS,
            product_id=product.id,
            seller_id=seller_id,
            points_awarded=product.points,
            details={
                "product_name": product.name,
                "price_paid": product.price,
                "amount_total": session.get("amount_total"),
                "currency": session.get("currency"),
                "payment_intent": session.get("payment_intent"),
            },
        )

        if not result.newly_succeeded:
            logger.info(f"Session {session_id} already credited, skipping points")
            return ProcessingResult(
                action="duplicate",
                external_session_id=session_id,
                status=PurchaseEvent.PAYMENT_SUCCESS,
            )

        if product.points <= 0:
            logger.info(f"No points to award for product {product.id} in session {session_id}")
            return ProcessingResult(
                action="payment_success",
                external_session_id=session_id,
                status=PurchaseEvent.PAYMENT_SUCCESS,
            )

        try:
            balance = self.projector.apply_points(
                customer_id, product.points, external_session_id=session_id
            )
        except BalanceIncrementFailed as e:
            logger.error(
                f"Reconciliation gap: session {session_id} is PAYMENT_SUCCESS but"
                f" {product.points} points were not credited to {customer_id}: {e}"
            )
            return ProcessingResult(
                action="balance_increment_failed",
                external_session_id=session_id,
                status=PurchaseEvent.PAYMENT_SUCCESS,
                error=str(e),
            )

        return ProcessingResult(
            action="payment_success",
            external_session_id=session_id,
            status=PurchaseEvent.PAYMENT_SUCCESS,
            points_credited=product.points,
            balance=balance,
        )

    def _resolve(self, customer_id, product_id):
        if not customer_id or not product_id:
            raise MetadataMissing("customer_id or product_id not found in session metadata")
        product = self.catalog.get(product_id)
        if product is None:
            raise ProductUnknown(product_id)
        return product

    # ──────────────────────────────────────────────
    # payment_intent.payment_failed
    # ──────────────────────────────────────────────

    def _handle_payment_failed(self, intent):
        intent_id = intent.get("id")
        last_error = _mapping(intent, "last_payment_error")
        reason = last_error.get("message")
        logger.info(f"Payment intent failed: {intent_id} Reason: {reason}")

        latest_charge = intent.get("latest_charge")
        if isinstance(latest_charge, dict):
            latest_charge = latest_charge.get("id")

        result = self.store.upsert_event(
            external_session_id=intent_id,
            customer_id=self._failed_payment_customer(intent),
            status=PurchaseEvent.PAYMENT_FAILED,
            details={
                "reason": reason,
                "payment_intent_id": intent_id,
                "latest_charge_id": latest_charge,
                "status": intent.get("status"),
                "amount": intent.get("amount"),
                "currency": intent.get("currency"),
            },
        )
        return ProcessingResult(
            action="payment_failed",
            external_session_id=intent_id,
            status=result.event.status,
        )

    @staticmethod
    def _failed_payment_customer(intent):
        """Best-effort payer id: receipt email, then expanded customer email."""
        if intent.get("receipt_email"):
            return intent["receipt_email"]
        customer = intent.get("customer")
        if isinstance(customer, dict) and customer.get("email"):
            return customer["email"]
        if isinstance(customer, str):
            logger.info(f"Payment failed for customer ID: {customer}, PI: {intent.get('id')}")
        return UNKNOWN_CUSTOMER

    # ──────────────────────────────────────────────
    # Cancellations
    # ──────────────────────────────────────────────

    def _handle_checkout_expired(self, session):
        metadata = _mapping(session, "metadata")
        return self.record_cancellation(
            session_id=session.get("id"),
            customer_id=metadata.get(METADATA_CUSTOMER_ID) or UNKNOWN_CUSTOMER,
            product_id=metadata.get(METADATA_PRODUCT_ID),
            seller_id=parse_seller_id(metadata.get(METADATA_SELLER_ID)),
            reason="Checkout session expired",
        )

    def record_cancellation(self, session_id, customer_id, product_id=None,
                            seller_id=0, reason="User clicked cancel on Stripe page"):
        """Record a CANCELLED row unless the session already succeeded."""
        product = self.catalog.get(product_id)
        details = {"reason": reason}
        if product:
            details["product_name"] = product.name
            details["price_paid"] = product.price

        result = self.store.upsert_event(
            external_session_id=session_id,
            customer_id=customer_id,
            status=PurchaseEvent.CANCELLED,
            product_id=product_id,
            seller_id=seller_id,
            details=details,
            preserve_success=True,
        )
        logger.info(f"Cancellation logged for session: {session_id}, customer: {customer_id}")
        return ProcessingResult(
            action="cancelled" if result.applied else "already_succeeded",
            external_session_id=session_id,
            status=result.event.status,
        )
