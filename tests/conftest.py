"""Shared test fixtures for the points ledger test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- services: the app's LedgerServices (store, projector, processor, ...)
- post_webhook: POST a Stripe-signed event to /api/webhooks/stripe
- admin_headers: headers carrying the admin API secret
"""

import pytest

from factories import WEBHOOK_SECRET, sign_payload, to_body
from points_ledger import create_app
from points_ledger.extensions import db as _db
from points_ledger.services import EXTENSION_KEY


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def admin_headers(app):
    return {"X-Admin-Secret": app.config["ADMIN_API_SECRET"]}


@pytest.fixture
def post_webhook(client):
    """Sign an event dict like Stripe would and POST it.

    body overrides the bytes sent (to simulate tampering) while the
    signature still covers the original event.
    """

    def _post(payload, secret=WEBHOOK_SECRET, timestamp=None, body=None, headers=None):
        raw = to_body(payload)
        if headers is None:
            headers = {"Stripe-Signature": sign_payload(raw, secret, timestamp)}
        return client.post(
            "/api/webhooks/stripe",
            data=raw if body is None else body,
            content_type="application/json",
            headers=headers,
        )

    return _post
