"""
Commission marketplace lifecycle engine
Flask Application Factory.

Usage:
    from marketplace import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate

from marketplace.config import config
from marketplace.core.exceptions import (
    ConflictError,
    IndexOutOfRangeError,
    LifecycleError,
    NotFoundError,
    RemoteUnavailableError,
    UnsupportedTransitionError,
    ValidationError,
)
from marketplace.integrations.adapter_gateway import adapter_gateway
from marketplace.middleware.logging_config import configure_logging
from marketplace.models import db
from marketplace.utils.errors import error_response

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()

# Errors that indicate a sequencing bug rather than a user mistake
_HIGH_SEVERITY = (ConflictError, UnsupportedTransitionError)


def _register_error_handlers(app):
    """Map every LifecycleError kind to its JSON error response."""

    def _handle(exc: LifecycleError):
        if isinstance(exc, _HIGH_SEVERITY):
            logger.error("%s: %s", exc.kind, exc, extra={"error_kind": exc.kind})
        else:
            logger.info("%s: %s", exc.kind, exc, extra={"error_kind": exc.kind})
        return error_response(exc)

    for exc_class in (
        ValidationError,
        NotFoundError,
        RemoteUnavailableError,
        ConflictError,
        IndexOutOfRangeError,
        UnsupportedTransitionError,
        LifecycleError,
    ):
        app.register_error_handler(exc_class, _handle)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Adapter gateway ──────────────────────────────────────────────────
    adapter_gateway.configure(
        base_url=app.config["ADAPTER_BASE_URL"],
        timeout=app.config["ADAPTER_TIMEOUT_SECONDS"],
    )

    # ── Import shadow models so Alembic can detect them ──────────────────
    from marketplace.models import shadow as _shadow_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ─────────────────────
    with app.app_context():
        db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
        if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
            os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()
        app.logger.debug("Shadow store tables ready")

    # ── Error handlers ───────────────────────────────────────────────────
    _register_error_handlers(app)

    @app.route("/health")
    def health():
        return {"status": "ok", "app": "commission-lifecycle"}

    return app
