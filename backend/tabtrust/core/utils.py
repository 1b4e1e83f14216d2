"""
Utility functions for the application.
"""
from typing import Any, Dict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
import math

from tabtrust.core.config import settings

SECONDS_PER_DAY = 24 * 60 * 60


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite/MySQL) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, rounded up."""
    elapsed = (as_utc(later) - as_utc(earlier)).total_seconds()
    return math.ceil(elapsed / SECONDS_PER_DAY)


def cooldown_cutoff(now: datetime, hours: int) -> datetime:
    """Timestamp before which a previous reminder no longer blocks a new one."""
    return now - timedelta(hours=hours)


def currency_scale(currency: str) -> int:
    """Number of decimal places amounts in ``currency`` are kept at."""
    return settings.CURRENCY_SCALES.get(currency.upper(), settings.DEFAULT_CURRENCY_SCALE)


def currency_unit(currency: str) -> Decimal:
    """Smallest representable amount in ``currency`` (e.g. 0.01)."""
    return Decimal(1).scaleb(-currency_scale(currency))


def quantize_amount(amount: Decimal, currency: str, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round an amount to the currency scale."""
    return Decimal(amount).quantize(currency_unit(currency), rounding=rounding)


def floor_amount(amount: Decimal, currency: str) -> Decimal:
    """Truncate an amount to the currency scale."""
    return quantize_amount(amount, currency, rounding=ROUND_DOWN)


def format_response(data: Any, message: str = "Success") -> Dict[str, Any]:
    """Format API response."""
    return {
        "message": message,
        "data": data
    }


def format_error(message: str, details: Any = None) -> Dict[str, Any]:
    """Format error response."""
    response = {"error": message}
    if details:
        response["details"] = details
    return response
