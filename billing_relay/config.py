import os

STORE_BACKENDS = ("sql", "supabase")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_PRICE_ID = os.environ.get("STRIPE_PRICE_ID")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2023-10-16")
    DOMAIN = os.environ.get("DOMAIN", "http://localhost:3000")
    PORT = int(os.environ.get("PORT", 3000))

    # --- Checkout ---
    TRIAL_PERIOD_DAYS = int(os.environ.get("TRIAL_PERIOD_DAYS", 14))

    # --- Subscription store ---
    # "sql" writes through SQLAlchemy (Supabase pooler or any Postgres),
    # "supabase" writes through the PostgREST API with the service role key.
    SUBSCRIPTION_STORE = os.environ.get("SUBSCRIPTION_STORE", "sql").lower()
    SUBSCRIPTION_TABLE = os.environ.get("SUBSCRIPTION_TABLE", "subscriptions")

    SUPABASE_URL = os.environ.get("SUPABASE_URL")                            # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # bypasses RLS for upserts
    SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", 10))

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///billing_relay.db"

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting (session endpoints only) ---
    SESSION_RATE_LIMIT = os.environ.get("SESSION_RATE_LIMIT", "10 per minute")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "STRIPE_SECRET_KEY",
            "STRIPE_PRICE_ID",
            "STRIPE_WEBHOOK_SECRET",
            "DOMAIN",
        ]
        # Service credentials are only required for the REST store
        store = os.environ.get("SUBSCRIPTION_STORE", "sql").lower()
        if store not in STORE_BACKENDS:
            raise RuntimeError(
                f"Unknown SUBSCRIPTION_STORE {store!r}; expected one of: "
                f"{', '.join(STORE_BACKENDS)}"
            )
        if store == "supabase":
            required += ["SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY"]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake Stripe credentials."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_PRICE_ID = "price_test_monthly"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    DOMAIN = "http://localhost:3000"
    TRIAL_PERIOD_DAYS = 14
    SUBSCRIPTION_STORE = "sql"
    SUPABASE_URL = "https://project.supabase.test"
    SUPABASE_SERVICE_ROLE_KEY = "service-role-test"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
