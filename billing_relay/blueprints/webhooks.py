"""Webhooks blueprint — /webhook

Receives Stripe webhook events. The raw body is read before anything else
touches the request; signature verification runs over those exact bytes.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from billing_relay.errors import WebhookError
from billing_relay.extensions import limiter, stripe_gateway
from billing_relay.services.reconciler import Reconciler
from billing_relay.services.subscription_store import build_store

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET, parse into a typed event
    3. Reconcile (map + upsert); failures are logged, not surfaced
    4. Return 200 so Stripe does not redeliver
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("stripe-signature")

    # --- Verify signature ---
    try:
        event = stripe_gateway.construct_event(payload, sig_header)
    except WebhookError as e:
        logger.warning(f"Webhook verification failed: {e}")
        return f"Webhook error: {e}", 400, {"Content-Type": "text/plain; charset=utf-8"}

    # --- Reconcile ---
    reconciler = Reconciler(stripe_gateway, build_store(current_app))
    outcome = reconciler.handle(event)
    logger.info(f"Webhook {event.event_type} ({event.event_id}): {outcome}")

    return jsonify({"received": True}), 200
