"""Exception types raised along the webhook path.

Verification errors reject the request (400). Mapping and store errors are
logged by the reconciler and never change the acknowledgment sent to Stripe.
"""


class WebhookError(Exception):
    """Base class for inbound webhook rejections."""


class InvalidSignature(WebhookError):
    """Missing or mismatched Stripe-Signature header."""


class MalformedPayload(WebhookError):
    """Body is not UTF-8 JSON or lacks the fields of a Stripe event."""


class MappingError(Exception):
    """A Stripe object could not be turned into a SubscriptionRecord."""


class StoreError(Exception):
    """The subscription upsert failed."""
