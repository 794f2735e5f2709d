"""Stripe service — every call to the Stripe API goes through StripeGateway.

Responsible for:
- Verifying webhook signatures over the raw request body
- Parsing verified payloads into typed events
- Retrieving full subscriptions for checkout completions
- Creating Checkout Sessions (subscription + trial) and Portal Sessions

The gateway is bound to an app via init_app() and passes the API key and
version on every request instead of mutating the global stripe.api_key.
"""

import json
import logging

import stripe

from billing_relay.errors import InvalidSignature, MalformedPayload
from billing_relay.events import parse_event

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin wrapper around the stripe SDK with explicit credentials."""

    def __init__(self, secret_key=None, webhook_secret=None, api_version=None,
                 tolerance=stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version
        self.tolerance = tolerance

    def init_app(self, app):
        self.secret_key = app.config.get("STRIPE_SECRET_KEY")
        self.webhook_secret = app.config.get("STRIPE_WEBHOOK_SECRET")
        self.api_version = app.config.get("STRIPE_API_VERSION")
        app.extensions["stripe_gateway"] = self

    def _request_options(self):
        options = {"api_key": self.secret_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    # ──────────────────────────────────────────────
    # Webhook verification
    # ──────────────────────────────────────────────

    def construct_event(self, payload, sig_header):
        """Verify the Stripe-Signature header and build a typed event.

        ``payload`` must be the request body exactly as received; any
        re-serialisation changes the signed bytes.

        Raises InvalidSignature or MalformedPayload.
        """
        if not sig_header:
            raise InvalidSignature("Missing stripe-signature header")

        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"Body is not valid UTF-8: {e}") from e

        try:
            stripe.WebhookSignature.verify_header(
                text, sig_header, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e

        try:
            data = json.loads(text)
        except ValueError as e:
            raise MalformedPayload(f"Body is not valid JSON: {e}") from e

        return parse_event(data)

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def retrieve_subscription(self, subscription_id):
        """Fetch the full subscription. Raises stripe.StripeError."""
        return stripe.Subscription.retrieve(subscription_id, **self._request_options())

    def retrieve_price(self, price_id):
        """Fetch a price with its product expanded. Raises stripe.StripeError."""
        return stripe.Price.retrieve(
            price_id, expand=["product"], **self._request_options()
        )

    # ──────────────────────────────────────────────
    # Checkout & Portal Sessions
    # ──────────────────────────────────────────────

    def create_checkout_session(self, email, user_id, price_id, domain,
                                trial_period_days=14):
        """Create a subscription Checkout Session with a free trial.

        user_id is written to both the session and subscription metadata so
        every later webhook can resolve the owner.

        Returns the hosted checkout URL.
        Raises stripe.StripeError on API failures.
        """
        session = stripe.checkout.Session.create(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            subscription_data={
                "trial_period_days": trial_period_days,
                "metadata": {"user_id": user_id},
            },
            customer_email=email,
            metadata={"user_id": user_id},
            success_url=f"{domain}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{domain}/cancel",
            allow_promotion_codes=True,
            **self._request_options(),
        )
        logger.info(f"Checkout session {session.id} created for user {user_id}")
        return session.url

    def create_portal_session(self, customer_id, return_url):
        """Create a Customer Portal Session.

        Returns the portal URL.
        Raises stripe.StripeError on API failures.
        """
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            **self._request_options(),
        )
        return session.url
