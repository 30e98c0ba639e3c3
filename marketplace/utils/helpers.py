"""Shared utility functions.

parse_datetime:      ISO / epoch-ms input -> aware UTC datetime (None on bad input)
parse_budget:        numeric budget or ValueError
db_commit_or_raise:  commit the shadow-store session, mapping DB errors onto lifecycle errors
"""
import logging
from datetime import date, datetime, timezone

from marketplace.core.exceptions import ConflictError
from marketplace.models import db

logger = logging.getLogger(__name__)


def parse_datetime(value):
    """Parse a delivery-date value into an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - datetime objects (naive values are taken as UTC)
    - date objects (midnight UTC)
    - ISO 8601 strings, including the adapter's trailing ``Z``
    - integer epoch milliseconds
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_budget(value):
    """Return ``value`` as a float, raising ValueError when it is not numeric."""
    if isinstance(value, bool):
        raise ValueError("budget must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("budget must be a number") from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_raise(resource="ShadowProject"):
    """Commit the current SQLAlchemy session, raising ConflictError on constraint violations.

    IntegrityError → rollback + ConflictError (duplicate external id, etc.)
    Anything else  → rollback + re-raise
    """
    from sqlalchemy.exc import IntegrityError

    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, "external_id", str(exc.orig)) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise
