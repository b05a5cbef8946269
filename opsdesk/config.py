"""
OpsDesk
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'opsdesk_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url_from_env():
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.0
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
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    # Auth
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "86400"))          # 24h
    PASSWORD_RESET_EXPIRES = int(os.getenv("PASSWORD_RESET_EXPIRES", "3600"))   # 1h
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (public submission endpoints)
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    PUBLIC_SUBMIT_RATE_LIMIT = os.getenv("PUBLIC_SUBMIT_RATE_LIMIT", "20/hour")
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "10/minute")

    # Email / SMTP (log-only mode when MAIL_SERVER is unset)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@opsdesk.local")
    MAIL_TIMEOUT = int(os.getenv("MAIL_TIMEOUT", "30"))
    ADMIN_NOTIFICATION_EMAIL = os.getenv("ADMIN_NOTIFICATION_EMAIL", "admin@opsdesk.local")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    COMPANY_NAME = os.getenv("COMPANY_NAME", "OpsDesk")

    # Notifications
    NOTIFICATION_ASYNC = os.getenv("NOTIFICATION_ASYNC", "true").lower() == "true"
    NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "4"))
    NOTIFICATION_AWAITED_WORKERS = int(os.getenv("NOTIFICATION_AWAITED_WORKERS", "2"))
    QUOTE_EMAIL_TIMEOUT = float(os.getenv("QUOTE_EMAIL_TIMEOUT", "10"))

    # Domain
    CURRENCY = os.getenv("CURRENCY", "KES")
    TICKET_NUMBER_MAX_ATTEMPTS = int(os.getenv("TICKET_NUMBER_MAX_ATTEMPTS", "5"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url_from_env() or _SQLITE_DEV


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # Pool sizing is rejected by SQLite's in-memory StaticPool
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    BCRYPT_ROUNDS = 4
    JWT_SECRET_KEY = "test-jwt-secret"
    MAIL_SERVER = None
    NOTIFICATION_ASYNC = False
    QUOTE_EMAIL_TIMEOUT = 2.0
    ADMIN_NOTIFICATION_EMAIL = "ops@opsdesk.test"


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
