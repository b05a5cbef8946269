"""Shared utility functions.

atomic:          unit-of-work context: commit on success, rollback + PersistenceError on failure
get_or_raise:    primary-key lookup raising NotFoundError
parse_datetime:  ISO-8601 parsing that always yields an aware UTC datetime
utc_now:         current time, timezone-aware
"""
import logging
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from opsdesk.core.exceptions import ConflictError, NotFoundError, PersistenceError
from opsdesk.models import db

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(label or model.__name__, pk)
    return obj


def parse_datetime(value):
    """Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are taken to be UTC.  Returns None for empty input and
    raises ValueError for anything unparseable.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; re-attach UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


# ── Unit of work ─────────────────────────────────────────────────────────────

@contextmanager
def atomic(conflict: ConflictError | None = None):
    """Run a block as one transaction.

    Commits when the block exits cleanly.  Any exception rolls the session
    back.  Database errors surface as ``PersistenceError``; an
    ``IntegrityError`` surfaces as *conflict* when one is given.

    Usage::

        with atomic():
            ticket.status = "resolved"
            write_activity(...)
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if conflict is not None:
            logger.info("Unique constraint hit on commit: %s", conflict)
            raise conflict from exc
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise PersistenceError("Duplicate or constraint violation") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise PersistenceError("Database error") from exc
    except Exception:
        db.session.rollback()
        raise
