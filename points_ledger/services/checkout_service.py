"""Checkout initiator — Stripe Checkout Session creation.

Responsible for:
- Building the session request: price, description, and the metadata bag
  (customer_id, product_id, seller_id) the webhook later trusts
- Calling the Stripe API
- Recording an INITIATED ledger row keyed by the new session id
"""

import logging
from urllib.parse import quote

import stripe

from points_ledger.errors import ProductUnknown, StorageUnavailable
from points_ledger.models.purchase_event import PurchaseEvent

logger = logging.getLogger(__name__)

METADATA_CUSTOMER_ID = "customer_id"
METADATA_PRODUCT_ID = "product_id"
METADATA_SELLER_ID = "seller_id"


class CheckoutInitiator:
    """Creates Stripe Checkout Sessions for catalog products."""

    def __init__(self, api_key, app_base_url, currency, catalog, store):
        self.api_key = api_key
        self.app_base_url = app_base_url.rstrip("/")
        self.currency = currency
        self.catalog = catalog
        self.store = store

    def build_session_params(self, customer_id, product, seller_id=0):
        """Return the keyword arguments for stripe.checkout.Session.create.

        Metadata values are strings, as Stripe requires.
        """
        email_q = quote(customer_id, safe="")
        return {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": product.name,
                            "description": (
                                f"Purchase of {product.name} for {product.points} points"
                            ),
                        },
                        "unit_amount": product.unit_amount,
                    },
                    "quantity": 1,
                },
            ],
            "success_url": (
                f"{self.app_base_url}/checkout?payment_success=true"
                f"&session_id={{CHECKOUT_SESSION_ID}}"
                f"&email={email_q}&productId={product.id}"
            ),
            "cancel_url": (
                f"{self.app_base_url}/checkout?payment_cancelled=true"
                f"&session_id={{CHECKOUT_SESSION_ID}}"
                f"&email={email_q}&productId={product.id}"
            ),
            "customer_email": customer_id,
            "metadata": {
                METADATA_CUSTOMER_ID: customer_id,
                METADATA_PRODUCT_ID: product.id,
                METADATA_SELLER_ID: str(seller_id),
            },
        }

    def create_checkout_session(self, customer_id, product_id, seller_id=0):
        """Create a Stripe Checkout Session and record it as INITIATED.

        Returns (session_id, url).
        Raises ProductUnknown for a product outside the catalog and
        stripe.StripeError on API failures. A failed INITIATED write is
        logged and does not fail the checkout.
        """
        product = self.catalog.get(product_id)
        if product is None:
            raise ProductUnknown(product_id)

        params = self.build_session_params(customer_id, product, seller_id)
        session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        session_id = session.get("id")
        if not session_id:
            raise stripe.StripeError("Failed to create Stripe session.")

        # A completion webhook can beat this write; never demote it.
        try:
            self.store.upsert_event(
                external_session_id=session_id,
                customer_id=customer_id,
                status=PurchaseEvent.INITIATED,
                product_id=product.id,
                seller_id=seller_id,
                details={
                    "product_name": product.name,
                    "price": product.price,
                    "currency": self.currency,
                },
                preserve_success=True,
            )
        except StorageUnavailable:
            # The webhook still records the outcome; only the INITIATED row is lost.
            logger.warning(f"Could not record INITIATED row for session {session_id}")
        logger.info(f"Created checkout session {session_id} for {customer_id} ({product.id})")
        return session_id, session.get("url")
