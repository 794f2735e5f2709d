"""Reconciler — mirrors Stripe subscription state into the store.

Dispatches on the typed event variant. Every handled event ends in at most
one upsert keyed by user_id. The relay trusts Stripe's status value and
never enforces transitions.

Failures (mapping, Stripe fetch, store write) are logged and reported as an
outcome string; they never raise, so the webhook is always acknowledged.
"""

import logging
from datetime import datetime, timezone

import stripe

from billing_relay.errors import MappingError, StoreError
from billing_relay.events import (
    CheckoutSessionCompleted,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from billing_relay.services.mapping import map_subscription

logger = logging.getLogger(__name__)

STORED = "stored"
IGNORED = "ignored"
MAPPING_FAILED = "mapping_failed"
FETCH_FAILED = "fetch_failed"
STORE_FAILED = "store_failed"


def _utcnow():
    return datetime.now(timezone.utc)


class Reconciler:

    def __init__(self, gateway, store, clock=None):
        self.gateway = gateway
        self.store = store
        self.clock = clock or _utcnow
        self._handlers = {
            CheckoutSessionCompleted: self._handle_checkout_completed,
            SubscriptionCreated: self._handle_subscription_event,
            SubscriptionUpdated: self._handle_subscription_event,
            SubscriptionDeleted: self._handle_subscription_event,
        }

    def handle(self, event):
        """Process a typed webhook event and return its outcome."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug(f"Ignoring {event.event_type} ({event.event_id})")
            return IGNORED
        return handler(event)

    def resync(self, subscription_id, user_id=None):
        """Re-fetch a subscription from Stripe and upsert it.

        user_id overrides whatever the subscription metadata says; use it
        for subscriptions created before metadata was attached.
        """
        metadata = {"user_id": user_id} if user_id else None
        try:
            subscription = self.gateway.retrieve_subscription(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Resync: failed to retrieve {subscription_id}: {e}")
            return FETCH_FAILED
        return self._store(subscription, metadata, context="resync")

    # ──────────────────────────────────────────────
    # Event Handlers
    # ──────────────────────────────────────────────

    def _handle_checkout_completed(self, event):
        """checkout.session.completed: fetch the full subscription, then upsert.

        Payment-mode sessions carry no subscription and are ignored.
        """
        if not event.is_subscription:
            logger.info(f"Checkout {event.session.get('id')} is not a subscription, skipping")
            return IGNORED

        subscription_id = event.subscription_id
        if not subscription_id:
            logger.error(f"Checkout {event.session.get('id')} has no subscription id")
            return MAPPING_FAILED

        try:
            subscription = self.gateway.retrieve_subscription(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Checkout: failed to retrieve subscription {subscription_id}: {e}")
            return FETCH_FAILED

        return self._store(subscription, event.metadata, context="checkout")

    def _handle_subscription_event(self, event):
        """customer.subscription.created / updated / deleted.

        A deleted subscription arrives with status=canceled and is stored
        like any other update; the row is kept.
        """
        return self._store(event.subscription, None, context=event.event_type)

    def _store(self, subscription, metadata, context):
        try:
            record = map_subscription(subscription, metadata, processed_at=self.clock())
        except MappingError as e:
            logger.error(f"Cannot map subscription ({context}): {e}")
            return MAPPING_FAILED

        try:
            self.store.upsert(record)
        except StoreError as e:
            logger.error(f"Failed to save subscription ({context}): {e}", exc_info=True)
            return STORE_FAILED

        logger.info(
            f"Subscription {record.stripe_subscription_id} saved for user "
            f"{record.user_id} ({context}, status={record.status})"
        )
        return STORED
