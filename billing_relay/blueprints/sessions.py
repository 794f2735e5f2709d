"""Sessions blueprint — /api/*

Hosted Stripe pages. Both routes are thin pass-throughs to StripeGateway.

Routes:
- POST /api/create-checkout-session  — {email, user_id} -> {url}
- POST /api/create-portal-session    — {customerId} -> {url}
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from billing_relay.extensions import limiter, stripe_gateway

logger = logging.getLogger(__name__)

sessions_bp = Blueprint("sessions", __name__, url_prefix="/api")


def _session_rate_limit():
    return current_app.config["SESSION_RATE_LIMIT"]


def _json_body():
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _stripe_error_response(e):
    # Stripe's own message is passed back to the caller as-is
    message = getattr(e, "user_message", None) or str(e)
    return jsonify({"error": message}), 500


# ──────────────────────────────────────────────
# POST /api/create-checkout-session
# ──────────────────────────────────────────────

@sessions_bp.route("/create-checkout-session", methods=["POST"])
@limiter.limit(_session_rate_limit)
def create_checkout_session():
    """Create a subscription Checkout Session with a free trial."""
    body = _json_body()
    email = body.get("email")
    user_id = body.get("user_id")

    if not email or not user_id:
        return jsonify({"error": "email and user_id are required"}), 400

    try:
        url = stripe_gateway.create_checkout_session(
            email=email,
            user_id=str(user_id),
            price_id=current_app.config["STRIPE_PRICE_ID"],
            domain=current_app.config["DOMAIN"],
            trial_period_days=current_app.config["TRIAL_PERIOD_DAYS"],
        )
    except stripe.StripeError as e:
        logger.error(f"Checkout session error: {e}")
        return _stripe_error_response(e)

    return jsonify({"url": url})


# ──────────────────────────────────────────────
# POST /api/create-portal-session
# ──────────────────────────────────────────────

@sessions_bp.route("/create-portal-session", methods=["POST"])
@limiter.limit(_session_rate_limit)
def create_portal_session():
    """Create a Customer Portal Session for an existing Stripe customer."""
    body = _json_body()
    customer_id = body.get("customerId")

    if not customer_id:
        return jsonify({"error": "customerId is required"}), 400

    try:
        url = stripe_gateway.create_portal_session(
            customer_id=customer_id,
            return_url=f"{current_app.config['DOMAIN']}/account",
        )
    except stripe.StripeError as e:
        logger.error(f"Portal session error: {e}")
        return _stripe_error_response(e)

    return jsonify({"url": url})
