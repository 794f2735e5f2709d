# Models package — import all models here so Alembic can discover them.

from billing_relay.models.subscription import Subscription  # noqa: F401
