"""
Commission marketplace lifecycle engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for the shadow store in local dev
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'shadow_store_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy (shadow store)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Adapter (remote system of record)
    ADAPTER_BASE_URL = os.getenv("ADAPTER_API_URL", "http://localhost:4000")
    ADAPTER_TIMEOUT_SECONDS = int(os.getenv("ADAPTER_TIMEOUT_SECONDS", "160"))

    # Workflow defaults passed to the adapter
    PROJECT_CONTRACT_VERSION = os.getenv("PROJECT_CONTRACT_VERSION", "v5")
    SCOPE_ADVANCE_PAYMENT_PERCENTAGE = int(os.getenv("SCOPE_ADVANCE_PAYMENT_PERCENTAGE", "10"))
    SCOPE_DOCUMENT_HASH = os.getenv(
        "SCOPE_DOCUMENT_HASH",
        "0x0000000000000000000000000000000000000000000000000000000000000000",
    )
    DEFAULT_TEAM_SIZE = int(os.getenv("DEFAULT_TEAM_SIZE", "2"))

    # Logging; None picks the per-environment default
    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")


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
    ADAPTER_BASE_URL = "http://adapter.test"
    ADAPTER_TIMEOUT_SECONDS = 5


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Heroku-style URLs use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
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
