"""
Patient Enrollment Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'enrollment_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)

# Retention horizons in days, keyed by retention category.
DEFAULT_RETENTION_DAYS = {
    "audit_logs": 7 * 365,
    "medical_records": 7 * 365,
    "temp_files": 30,
    "sessions": 1,
}


def _retention_days_from_env() -> dict[str, int]:
    """Apply RETENTION_DAYS_<CATEGORY> overrides on top of the defaults."""
    days = dict(DEFAULT_RETENTION_DAYS)
    for category in days:
        raw = os.getenv(f"RETENTION_DAYS_{category.upper()}")
        if raw:
            days[category] = int(raw)
    return days


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
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Outbound workflow trigger
    AUTOMATION_TRIGGER_URL = os.getenv(
        "AUTOMATION_TRIGGER_URL",
        "https://start-chain-run-943506065004.us-central1.run.app",
    )
    AUTOMATION_TRIGGER_TIMEOUT = int(os.getenv("AUTOMATION_TRIGGER_TIMEOUT", "30"))
    AUTOMATION_RUN_EMAIL = os.getenv("AUTOMATION_RUN_EMAIL", "automation@enrollment.local")
    AUTOMATION_RECORD_LABEL = os.getenv("AUTOMATION_RECORD_LABEL", "external app")

    # Retention & scheduling
    RETENTION_DAYS = _retention_days_from_env()
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "America/New_York")
    SCHEDULER_POLL_SECONDS = int(os.getenv("SCHEDULER_POLL_SECONDS", "30"))

    # Session store
    SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    # The timer thread never runs under pytest; jobs are triggered explicitly.
    SCHEDULER_ENABLED = False
    AUTOMATION_TRIGGER_URL = "https://chain-runner.test/start"
    AUTOMATION_TRIGGER_TIMEOUT = 5


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
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
