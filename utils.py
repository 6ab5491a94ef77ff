"""Utility / helper functions used across the application."""

from __future__ import annotations

import calendar
import datetime
import logging
from datetime import timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)


def parse_date(raw: Optional[str]) -> Optional[datetime.date]:
    if not raw:
        return None
    try:
        return datetime.datetime.strptime(raw, "%Y-%m-%d").date()
    except (ValueError, TypeError):
        logger.warning("Could not parse date: %r", raw)
        return None


def parse_datetime(raw: Optional[str]) -> Optional[datetime.datetime]:
    """Parse ``YYYY-MM-DDTHH:MM`` (seconds optional) or a bare date."""
    if not raw:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d"):
        try:
            return datetime.datetime.strptime(raw, fmt)
        except (ValueError, TypeError):
            continue
    logger.warning("Could not parse datetime: %r", raw)
    return None


def month_bounds(year: int, month: int) -> tuple[datetime.datetime, datetime.datetime]:
    """Return the first instant and last second of a calendar month.

    Raises ``ValueError`` for a month outside 1-12.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    last_day = calendar.monthrange(year, month)[1]
    start = datetime.datetime(year, month, 1, 0, 0, 0)
    end = datetime.datetime(year, month, last_day, 23, 59, 59)
    return start, end


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------

def safe_int(value, default: int = 0) -> int:
    """Safely convert *value* to ``int``, returning *default* on failure."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Could not convert %r to int, using default %s", value, default)
        return default


def to_decimal(value, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Convert *value* to ``Decimal`` via ``str`` so floats do not leak binary noise."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("Could not convert %r to Decimal, using default %s", value, default)
        return default


def money(value) -> Decimal:
    """Quantize to two decimals, half-up."""
    return to_decimal(value, Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)
