"""Field mapping — Stripe subscription objects to SubscriptionRecord.

Responsible for:
- Converting epoch-second timestamps to ISO-8601 strings (or None)
- Resolving the owning user_id from event metadata, then subscription metadata
- Extracting the price from the first subscription item

Works on plain dicts (webhook payloads) and stripe.StripeObject values
(Subscription.retrieve) alike, so every lookup goes through _field().
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from billing_relay.errors import MappingError

TIMESTAMP_FIELDS = (
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "cancel_at",
    "canceled_at",
)


@dataclass(frozen=True)
class SubscriptionRecord:
    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: str
    status: str
    updated_at: str
    current_period_start: Optional[str] = None
    current_period_end: Optional[str] = None
    trial_start: Optional[str] = None
    trial_end: Optional[str] = None
    cancel_at: Optional[str] = None
    canceled_at: Optional[str] = None

    def as_dict(self):
        return asdict(self)


def _field(obj, key):
    """Return obj[key], or None if obj is empty or the key is absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _id_of(value):
    """Stripe fields such as ``customer`` may be an id or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def format_timestamp(dt):
    """UTC datetime -> ``2023-11-14T22:13:20.000Z``."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def to_iso(ts):
    """Convert an epoch-seconds value to an ISO-8601 string.

    Returns None for None or 0. Raises MappingError on non-numeric input
    and on values outside the platform's datetime range (including NaN/inf).
    """
    if ts is None or ts == 0:
        return None
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        raise MappingError(f"Timestamp {ts!r} is not epoch seconds")
    try:
        dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise MappingError(f"Timestamp {ts!r} is out of range: {e}") from e
    return format_timestamp(dt)


def _first_item(subscription):
    items = _field(subscription, "items")
    data = _field(items, "data")
    # A malformed list (e.g. a JSON object) counts as no line items
    if not isinstance(data, (list, tuple)) or len(data) == 0:
        return None
    return data[0]


def _period_timestamp(subscription, key):
    """Read a billing period bound.

    In newer Stripe API versions the period bounds moved from the
    subscription top level to items.data[0]. Top level wins when present.
    """
    ts = _field(subscription, key)
    if not ts:
        ts = _field(_first_item(subscription), key)
    return ts


def resolve_user_id(subscription, metadata=None):
    """Event-level metadata first, subscription metadata second."""
    for source in (metadata, _field(subscription, "metadata")):
        user_id = _field(source, "user_id")
        if user_id:
            return str(user_id)
    return None


def map_subscription(subscription, metadata=None, processed_at=None):
    """Build a SubscriptionRecord from a Stripe subscription.

    Args:
        subscription: Stripe subscription (dict or StripeObject).
        metadata:     Event-level metadata (e.g. the checkout session's),
                      consulted before the subscription's own metadata.
        processed_at: Write time for updated_at; defaults to now (UTC).

    Raises MappingError if no user_id resolves or there are no line items.
    """
    subscription_id = _field(subscription, "id")

    user_id = resolve_user_id(subscription, metadata)
    if not user_id:
        raise MappingError(f"No user_id in metadata for subscription {subscription_id}")

    item = _first_item(subscription)
    if item is None:
        raise MappingError(f"Subscription {subscription_id} has no line items")

    price_id = _id_of(_field(item, "price"))
    if not price_id:
        raise MappingError(f"Subscription {subscription_id} item has no price")

    if processed_at is None:
        processed_at = datetime.now(timezone.utc)

    return SubscriptionRecord(
        user_id=user_id,
        stripe_customer_id=_id_of(_field(subscription, "customer")),
        stripe_subscription_id=subscription_id,
        stripe_price_id=price_id,
        status=_field(subscription, "status"),
        current_period_start=to_iso(_period_timestamp(subscription, "current_period_start")),
        current_period_end=to_iso(_period_timestamp(subscription, "current_period_end")),
        trial_start=to_iso(_field(subscription, "trial_start")),
        trial_end=to_iso(_field(subscription, "trial_end")),
        cancel_at=to_iso(_field(subscription, "cancel_at")),
        canceled_at=to_iso(_field(subscription, "canceled_at")),
        updated_at=format_timestamp(processed_at),
    )
