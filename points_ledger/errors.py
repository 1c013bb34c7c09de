"""Ledger error taxonomy.

Boundary errors (signature, malformed body) are rejected before anything is
written. MetadataMissing / ProductUnknown describe terminal ledger states and
are recorded, not propagated. StorageUnavailable is retryable: the webhook
answers 5xx so Stripe redelivers. BalanceIncrementFailed marks a
reconciliation gap after the success row is already committed.
"""


class LedgerError(Exception):
    """Base class for every error raised by the points ledger."""


class SignatureInvalid(LedgerError):
    """Webhook signature header missing, mismatched, or outside tolerance."""


class SecretNotConfigured(LedgerError):
    """No webhook signing secret is configured. Deployment error."""


class MalformedNotification(LedgerError):
    """Body verified but is not a usable Stripe event."""


class MetadataMissing(LedgerError):
    """Completed checkout without customer_id or product_id in metadata."""


class ProductUnknown(LedgerError):
    """Product id is not in the configured catalog."""

    def __init__(self, product_id):
        super().__init__(f"Product ID {product_id} not found.")
        self.product_id = product_id


class StorageUnavailable(LedgerError):
    """The ledger write failed. Retryable."""


class BalanceIncrementFailed(LedgerError):
    """Points could not be credited after the success event was committed."""

    def __init__(self, customer_id, delta, external_session_id=None):
        super().__init__(
            f"Failed to credit {delta} points to {customer_id}"
            f" (session {external_session_id})"
        )
        self.customer_id = customer_id
        self.delta = delta
        self.external_session_id = external_session_id
