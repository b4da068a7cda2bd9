# config.py
import os


def _getenv(key: str, default: str | None = None) -> str | None:
    """Small wrapper to read environment variables."""
    val = os.getenv(key)
    return val if (val is not None and val != "") else default


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _as_float(value: str | None, default: float) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _normalize_db_url(db_url: str) -> str:
    # Render/Heroku sometimes provide "postgres://"; SQLAlchemy wants "postgresql://"
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql://", 1)
    return db_url


class BaseConfig:
    # -------------------
    # Core / Flask
    # -------------------
    ENV = _getenv("FLASK_ENV", "development")
    DEBUG = _as_bool(_getenv("FLASK_DEBUG"), default=(ENV != "production"))
    TESTING = _as_bool(_getenv("FLASK_TESTING"), default=False)

    SECRET_KEY = _getenv("SECRET_KEY", "dev-secret-key")
    LOG_LEVEL = _getenv("LOG_LEVEL", "INFO")

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = _getenv("SESSION_COOKIE_SAMESITE", "Lax")

    BASE_URL = _getenv("BASE_URL", "http://localhost:5000")

    # -------------------
    # Database
    # -------------------
    _db_url = _getenv("DATABASE_URL", "sqlite:///instance/app.db")
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # -------------------
    # Mail / SendGrid
    # -------------------
    MAIL_DEFAULT_SENDER = _getenv("MAIL_DEFAULT_SENDER", "")
    SENDGRID_API_KEY = _getenv("SENDGRID_API_KEY", "")

    # -------------------
    # Stripe (payment / payout rail)
    # -------------------
    STRIPE_SECRET_KEY = _getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = _getenv("STRIPE_WEBHOOK_SECRET", "")
    STRIPE_API_BASE = _getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
    STRIPE_TIMEOUT_SECONDS = _as_int(_getenv("STRIPE_TIMEOUT_SECONDS"), default=20)
    PAYOUT_CURRENCY = _getenv("PAYOUT_CURRENCY", "usd")

    # Connected accounts are created with platform defaults (we are the merchant)
    PLATFORM_MCC = _getenv("PLATFORM_MCC", "5815")  # Digital Goods Media
    PLATFORM_URL = _getenv("PLATFORM_URL", "https://example.com")

    # -------------------
    # Fees / pricing
    # -------------------
    DEFAULT_PLATFORM_FEE_PERCENT = _as_int(_getenv("DEFAULT_PLATFORM_FEE_PERCENT"), default=20)
    MIN_LINK_PRICE = _as_float(_getenv("MIN_LINK_PRICE"), default=5.00)

    INSTANT_PAYOUT_FEE_PERCENT = _as_float(_getenv("INSTANT_PAYOUT_FEE_PERCENT"), default=1.00)
    INSTANT_PAYOUT_FEE_MIN = _as_float(_getenv("INSTANT_PAYOUT_FEE_MIN"), default=0.50)
    INSTANT_PAYOUT_FEE_MAX = None  # optional (e.g. "25.00")


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    # Tighten cookie security for HTTPS deployments
    SESSION_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    ENV = "testing"
    DEBUG = False
    TESTING = True

    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    # SQLite serializes writers; give concurrent test threads room to wait
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30, "check_same_thread": False}}

    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    SENDGRID_API_KEY = ""
    MAIL_DEFAULT_SENDER = "no-reply@example.com"
    PLATFORM_URL = "https://paylink.test"
    BASE_URL = "https://paylink.test"


CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
