"""Typed webhook events.

A verified Stripe payload is parsed into exactly one variant. The reconciler
dispatches on the variant class, never on the raw ``type`` string.
"""

from dataclasses import dataclass, field

from billing_relay.errors import MalformedPayload

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    event_type: str
    data: dict = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class CheckoutSessionCompleted(WebhookEvent):
    """A hosted checkout finished. ``data`` is the checkout session."""

    @property
    def session(self):
        return self.data

    @property
    def is_subscription(self):
        return self.data.get("mode") == "subscription"

    @property
    def subscription_id(self):
        sub = self.data.get("subscription")
        # Expanded sessions carry the whole object
        if isinstance(sub, dict):
            return sub.get("id")
        return sub

    @property
    def metadata(self):
        return self.data.get("metadata") or {}


@dataclass(frozen=True)
class SubscriptionEvent(WebhookEvent):
    """Base for customer.subscription.* events. ``data`` is the subscription."""

    @property
    def subscription(self):
        return self.data


class SubscriptionCreated(SubscriptionEvent):
    pass


class SubscriptionUpdated(SubscriptionEvent):
    pass


class SubscriptionDeleted(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class IgnoredEvent(WebhookEvent):
    """Any event type the relay does not mirror."""


EVENT_TYPES = {
    CHECKOUT_SESSION_COMPLETED: CheckoutSessionCompleted,
    SUBSCRIPTION_CREATED: SubscriptionCreated,
    SUBSCRIPTION_UPDATED: SubscriptionUpdated,
    SUBSCRIPTION_DELETED: SubscriptionDeleted,
}


def parse_event(payload):
    """Build a typed event from a decoded Stripe event dict.

    Raises MalformedPayload when id, type or data.object is missing.
    """
    if not isinstance(payload, dict):
        raise MalformedPayload("Event payload is not a JSON object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None

    if not event_id or not event_type:
        raise MalformedPayload("Event is missing id or type")
    if not isinstance(obj, dict):
        raise MalformedPayload(f"Event {event_id} has no data.object")

    cls = EVENT_TYPES.get(event_type, IgnoredEvent)
    return cls(event_id=event_id, event_type=event_type, data=obj)
