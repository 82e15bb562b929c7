"""Shared utility functions for services and blueprints.

parse_datetime:      ISO date / datetime string → aware datetime (None on bad input)
parse_pagination:    page / limit query args, clamped to configured bounds
paginate:            run a query page and build the pagination envelope
commit_or_raise:     commit the session, translating integrity errors
"""
import logging
import math
from datetime import date, datetime, time, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shopfloor.core.exceptions import ConflictError
from shopfloor.models import db

logger = logging.getLogger(__name__)


def parse_datetime(value):
    """Parse an ISO date or datetime string to a timezone-aware datetime.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (midnight UTC)
    - YYYY-MM-DDTHH:MM:SS[+HH:MM] (naive values are taken as UTC)
    - trailing "Z" designator
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_pagination(args) -> tuple[int, int]:
    """Read ``page`` / ``limit`` from request args.

    Missing or non-numeric values fall back to page 1 and DEFAULT_PAGE_SIZE;
    limit is capped at MAX_PAGE_SIZE.
    """
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 10)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)

    page = args.get("page", 1, type=int) or 1
    limit = args.get("limit", default_size, type=int) or default_size
    return max(page, 1), min(max(limit, 1), max_size)


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    """Return ``(items, pagination)`` for one page of ``query``."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = math.ceil(total / limit) if limit else 0
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise():
    """Commit the current SQLAlchemy session, rolling back on failure.

    IntegrityError → ConflictError (duplicate / constraint violation)
    Other SQLAlchemyError → rolled back, logged and re-raised
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError("Duplicate or constraint violation") from exc
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise
