"""Ledger services, built once per app from its config.

Components receive their configuration (secrets, catalog, URLs) at
construction time and never read current_app.config themselves.
"""

from flask import current_app

from points_ledger.catalog import Catalog
from points_ledger.services.balance_projector import BalanceProjector
from points_ledger.services.checkout_service import CheckoutInitiator
from points_ledger.services.event_processor import EventProcessor
from points_ledger.services.event_store import EventStore
from points_ledger.services.webhook_verifier import WebhookVerifier

EXTENSION_KEY = "points_ledger"


class LedgerServices:
    def __init__(self, config):
        self.catalog = Catalog(config.get("PRODUCT_CATALOG"))
        self.store = EventStore()
        self.projector = BalanceProjector()
        self.verifier = WebhookVerifier(
            secret=config.get("STRIPE_WEBHOOK_SECRET"),
            tolerance=config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
        )
        self.processor = EventProcessor(self.store, self.projector, self.catalog)
        self.checkout = CheckoutInitiator(
            api_key=config.get("STRIPE_SECRET_KEY"),
            app_base_url=config.get("APP_BASE_URL", "http://localhost:3000"),
            currency=config.get("CHECKOUT_CURRENCY", "eur"),
            catalog=self.catalog,
            store=self.store,
        )


def init_services(app):
    app.extensions[EXTENSION_KEY] = LedgerServices(app.config)


def get_services():
    """LedgerServices bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]
