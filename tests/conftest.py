"""Shared test fixtures for the billing relay test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- sign_payload: builds a real Stripe-Signature header for raw bytes
- post_event: signs an event dict and POSTs it to /webhook
"""

import hashlib
import hmac
import json
import time

import pytest

from billing_relay import create_app
from billing_relay.extensions import db as _db

WEBHOOK_SECRET = "whsec_test_fake"


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Compute a v1 Stripe-Signature header over the exact payload bytes."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_subscription(**overrides):
    """A Stripe subscription payload with sensible defaults."""
    sub = {
        "id": "sub_test_001",
        "object": "subscription",
        "customer": "cus_test_001",
        "status": "active",
        "current_period_start": 1700000000,
        "current_period_end": 1702592000,
        "trial_start": None,
        "trial_end": None,
        "cancel_at": None,
        "canceled_at": None,
        "metadata": {"user_id": "u1"},
        "items": {
            "object": "list",
            "data": [{"id": "si_001", "price": {"id": "price_test_monthly"}}],
        },
    }
    sub.update(overrides)
    return sub


def make_event(event_type, obj, event_id="evt_test_001"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


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
def post_event(client):
    """POST a signed event to /webhook. Returns the response."""

    def _post(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event).encode("utf-8")
        return client.post(
            "/webhook",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret=secret)},
        )

    return _post
