"""
TaviList
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets
import tempfile

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not configured
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'tavilist_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url_from_env():
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # Auth
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "28800"))  # 8 h
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")

    # CORS / rate limits
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    PUBLIC_RATE_LIMIT = os.getenv("PUBLIC_RATE_LIMIT", "30 per minute")
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "10 per minute")
    NOTIFICATION_RATE_LIMIT = os.getenv("NOTIFICATION_RATE_LIMIT", "30 per minute")

    # Public links sent to clients
    SITE_URL = os.getenv("SITE_URL", "http://localhost:5173")

    # Email (Resend): dev mode logs without sending when key is absent
    RESEND_API_KEY = os.getenv("RESEND_API_KEY")
    RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
    EMAIL_FROM = os.getenv("EMAIL_FROM", "TaviList <onboarding@resend.dev>")
    EMAIL_TIMEOUT = int(os.getenv("EMAIL_TIMEOUT", "15"))

    # WhatsApp (Evolution API): connection details live in whatsapp_config
    WHATSAPP_TIMEOUT = int(os.getenv("WHATSAPP_TIMEOUT", "15"))
    WHATSAPP_SEND_DELAY_MS = int(os.getenv("WHATSAPP_SEND_DELAY_MS", "1500"))

    # Object storage: Supabase-compatible REST when STORAGE_URL is set,
    # local filesystem otherwise
    STORAGE_URL = os.getenv("STORAGE_URL")
    STORAGE_KEY = os.getenv("STORAGE_KEY")
    STORAGE_LOCAL_DIR = os.getenv("STORAGE_LOCAL_DIR", os.path.join(basedir, "instance", "media"))
    STORAGE_TIMEOUT = int(os.getenv("STORAGE_TIMEOUT", "30"))
    MEDIA_CACHE_SECONDS = int(os.getenv("MEDIA_CACHE_SECONDS", "86400"))

    # Limits
    SIGNATURE_MAX_BYTES = int(os.getenv("SIGNATURE_MAX_BYTES", str(500 * 1024)))
    ATTACHMENT_MAX_BYTES = int(os.getenv("ATTACHMENT_MAX_BYTES", str(10 * 1024 * 1024)))
    # Request body cap must fit a full attachment plus multipart overhead
    MAX_CONTENT_LENGTH = ATTACHMENT_MAX_BYTES + 1024 * 1024

    # Reporting
    REPORT_IMAGE_TIMEOUT = int(os.getenv("REPORT_IMAGE_TIMEOUT", "10"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url_from_env() or _SQLITE_DEV
    # Auth disabled by default in development for convenience
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    # Auth disabled in test environment: callers act as admin
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    SITE_URL = "https://obras.example.com"
    RESEND_API_KEY = None
    STORAGE_URL = None
    STORAGE_LOCAL_DIR = os.path.join(tempfile.gettempdir(), "tavilist-test-media")


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url_from_env()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
