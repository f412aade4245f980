import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Shopify ---
    SHOPIFY_WEBHOOK_SECRET = os.environ.get("SHOPIFY_WEBHOOK_SECRET")
    SHOPIFY_STORE_DOMAIN = os.environ.get("SHOPIFY_STORE_DOMAIN")    # e.g. my-shop.myshopify.com
    SHOPIFY_ACCESS_TOKEN = os.environ.get("SHOPIFY_ACCESS_TOKEN")    # Admin API token (registration only)
    SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-01")
    WEBHOOK_PUBLIC_URL = os.environ.get("WEBHOOK_PUBLIC_URL")        # https://host/webhooks/shopify

    # Bearer token for the operator-facing /webhooks/recent listing.
    # Unset = listing disabled.
    WEBHOOK_ADMIN_TOKEN = os.environ.get("WEBHOOK_ADMIN_TOKEN")

    # --- Normalization defaults ---
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "QAR")
    DEFAULT_DIAL_CODE = os.environ.get("DEFAULT_DIAL_CODE", "+974")

    # --- Logging ---
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # json | text
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    WEBHOOK_SLOW_REQUEST_MS = int(os.environ.get("WEBHOOK_SLOW_REQUEST_MS", 3000))

    # --- SQLAlchemy ---
    # Shopify gives up after ~5s, so store round-trips must fail before that.
    DATABASE_STATEMENT_TIMEOUT_MS = int(
        os.environ.get("DATABASE_STATEMENT_TIMEOUT_MS", 5000)
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting ---
    RATELIMIT_ENABLED = not _env_flag("RATELIMIT_DISABLED")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "DATABASE_URL",
            "SHOPIFY_WEBHOOK_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")
    SQLALCHEMY_DATABASE_URI = Config.SQLALCHEMY_DATABASE_URI or "sqlite:///storehook-dev.db"


class TestConfig(Config):
    """Testing — in-memory SQLite, fixed secrets."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SHOPIFY_WEBHOOK_SECRET = "shpss_test_secret"
    SHOPIFY_STORE_DOMAIN = "test-shop.myshopify.com"
    SHOPIFY_ACCESS_TOKEN = "shpat_test_fake"
    WEBHOOK_PUBLIC_URL = "https://hooks.example.test/webhooks/shopify"
    WEBHOOK_ADMIN_TOKEN = "operator-test-token"
    DEFAULT_CURRENCY = "QAR"
    DEFAULT_DIAL_CODE = "+974"
    LOG_FORMAT = "json"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production on PostgreSQL."""

    DEBUG = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "pool_timeout": 5,
        "connect_args": {
            "connect_timeout": 5,
            "options": f"-c statement_timeout={Config.DATABASE_STATEMENT_TIMEOUT_MS}",
        },
    }


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
