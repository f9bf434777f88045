"""Date and clock helpers shared by the resolvers and the ledger."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: the current UTC-aware time."""
    return datetime.now(timezone.utc)


def to_date(value: date | datetime | str) -> date:
    """Normalise a date, datetime or ``YYYY-MM-DD``-prefixed string to a :class:`date`.

    Raises:
        ValueError: If *value* is a string that does not start with an ISO date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def utc_day(moment: datetime) -> date:
    """Return the UTC calendar date of *moment*; naive datetimes are assumed UTC."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def isoformat_utc(moment: datetime) -> str:
    """Serialise *moment* as an ISO string; naive datetimes are assumed UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat()


def to_utc(moment: datetime) -> datetime:
    """Return *moment* in UTC; naive datetimes are assumed UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
