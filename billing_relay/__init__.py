import os
import logging

import click
from flask import Flask, jsonify

from billing_relay.config import config_by_name
from billing_relay.extensions import db, migrate, limiter, stripe_gateway


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    stripe_gateway.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from billing_relay import models  # noqa: F401

    # --- Register blueprints ---
    # No body-parsing middleware runs before views: the webhook view reads
    # request.get_data() itself and must see the untouched bytes.
    from billing_relay.blueprints.sessions import sessions_bp
    from billing_relay.blueprints.webhooks import webhooks_bp

    app.register_blueprint(sessions_bp)
    app.register_blueprint(webhooks_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        """Liveness check."""
        return "Billing relay is running", 200, {"Content-Type": "text/plain; charset=utf-8"}

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": f"Rate limit exceeded: {e.description}"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON/text API only: nothing may be loaded or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("sync-subscription")
    @click.argument("subscription_id")
    @click.option("--user-id", default=None, help="Owner to store the row under (overrides metadata)")
    def sync_subscription(subscription_id, user_id):
        """Re-fetch a subscription from Stripe and upsert it.

        Recovery path for webhook writes that failed and were only logged.

        Usage:
            flask sync-subscription sub_123
            flask sync-subscription sub_123 --user-id 42
        """
        from billing_relay.services.reconciler import Reconciler
        from billing_relay.services.subscription_store import build_store

        reconciler = Reconciler(stripe_gateway, build_store(app))
        outcome = reconciler.resync(subscription_id, user_id=user_id)
        click.echo(f"{subscription_id}: {outcome}")

    @app.cli.command("verify-stripe-price")
    def verify_stripe_price():
        """Verify STRIPE_PRICE_ID exists and is usable (same mode as key)."""
        import stripe as _stripe

        api_key = app.config.get("STRIPE_SECRET_KEY")
        price_id = app.config.get("STRIPE_PRICE_ID")

        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        if not price_id:
            click.echo("ERROR: STRIPE_PRICE_ID is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")

        try:
            price = stripe_gateway.retrieve_price(price_id)
        except _stripe.StripeError as e:
            click.echo(f"  {price_id}")
            click.echo(f"    ERROR: {e}")
            return

        product = price["product"]
        product_active = product["active"] if not isinstance(product, str) else "?"
        livemode = price["livemode"]
        recurring = price["recurring"]
        click.echo(f"  {price_id}")
        click.echo(
            f"    exists=True, livemode={livemode}, product_active={product_active}, "
            f"recurring={bool(recurring)}"
        )
        if livemode is True and key_mode != "Live":
            click.echo("    WARNING: This price is Live but your key is Test.")
        elif livemode is False and key_mode == "Live":
            click.echo("    WARNING: This price is Test but your key is Live.")
        if not recurring:
            click.echo("    WARNING: Subscription checkout needs a recurring price.")
