"""Pattern calendar: hour-of-day curves, seasonal factors, holidays and opening hours.

The fusion engine treats the calendar as an injected collaborator; this module
is the default, pattern-based implementation.  It turns a destination and a
moment into a :class:`CalendarContext` snapshot that the engine consumes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import numpy as np

from crowdsignal.models import WEEKDAY_NAMES, DestinationSnapshot, Holiday

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "default"


def _curve(*values: float) -> np.ndarray:
    if len(values) != 24:
        raise ValueError(f"Hourly curves need 24 values, got {len(values)}")
    return np.array(values, dtype=float)


# Relative busyness per hour (0–23), 1.0 = the category's daily peak
HOURLY_PATTERNS: dict[str, np.ndarray] = {
    "default": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.15, 0.30, 0.45, 0.60, 0.75, 0.90, 1.00,
        0.95, 0.85, 0.80, 0.85, 0.90, 0.95, 0.85, 0.70, 0.50, 0.30, 0.15, 0.08,
    ),
    "religious": _curve(
        0.10, 0.05, 0.05, 0.10, 0.30, 0.60, 0.90, 1.00, 0.95, 0.85, 0.75, 0.70,
        0.60, 0.50, 0.45, 0.50, 0.60, 0.75, 0.85, 0.70, 0.50, 0.30, 0.15, 0.10,
    ),
    "beach": _curve(
        0.02, 0.01, 0.01, 0.01, 0.05, 0.20, 0.50, 0.70, 0.60, 0.40, 0.25, 0.15,
        0.10, 0.10, 0.15, 0.25, 0.50, 0.80, 1.00, 0.90, 0.60, 0.40, 0.20, 0.05,
    ),
    "nature": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.10, 0.25, 0.40, 0.55, 0.70, 0.85, 0.95,
        1.00, 0.95, 0.90, 0.85, 0.80, 0.70, 0.55, 0.40, 0.25, 0.15, 0.08, 0.05,
    ),
    "wildlife": _curve(
        0.02, 0.02, 0.05, 0.10, 0.30, 0.70, 1.00, 0.95, 0.80, 0.60, 0.30, 0.15,
        0.05, 0.05, 0.10, 0.30, 0.60, 0.80, 0.70, 0.40, 0.15, 0.05, 0.02, 0.02,
    ),
    "urban": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.12, 0.25, 0.40, 0.70, 0.85, 0.80, 0.75,
        0.80, 0.70, 0.55, 0.65, 0.85, 1.00, 0.90, 0.65, 0.60, 0.20, 0.10, 0.06,
    ),
    "hill-station": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.15, 0.30, 0.50, 0.75, 0.90, 1.00, 0.95,
        0.85, 0.80, 0.75, 0.70, 0.65, 0.60, 0.50, 0.35, 0.20, 0.12, 0.07, 0.05,
    ),
    "cultural": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.10, 0.20, 0.35, 0.55, 0.75, 0.90, 1.00,
        0.90, 0.80, 0.65, 0.60, 0.65, 0.70, 0.55, 0.35, 0.20, 0.10, 0.05, 0.05,
    ),
    "adventure": _curve(
        0.05, 0.02, 0.02, 0.05, 0.15, 0.35, 0.70, 0.90, 1.00, 0.95, 0.85, 0.75,
        0.60, 0.55, 0.65, 0.75, 0.70, 0.50, 0.30, 0.15, 0.08, 0.05, 0.02, 0.02,
    ),
    "monument": _curve(
        0.02, 0.02, 0.02, 0.02, 0.05, 0.10, 0.20, 0.35, 0.60, 0.85, 1.00, 0.95,
        0.85, 0.75, 0.65, 0.70, 0.75, 0.70, 0.50, 0.30, 0.15, 0.05, 0.02, 0.02,
    ),
    "entertainment": _curve(
        0.05, 0.02, 0.02, 0.02, 0.05, 0.05, 0.05, 0.10, 0.20, 0.50, 0.75, 0.90,
        0.95, 1.00, 0.95, 0.90, 0.85, 0.80, 0.70, 0.55, 0.35, 0.20, 0.10, 0.05,
    ),
}
HOURLY_PATTERNS["hillstation"] = HOURLY_PATTERNS["hill-station"]

# Monday first, matching date.weekday()
DAY_OF_WEEK_FACTORS = np.array([0.70, 0.65, 0.68, 0.75, 0.95, 1.25, 1.30])

# January first
SEASONAL_PATTERNS: dict[str, np.ndarray] = {
    "default": np.array([1.30, 1.25, 1.10, 0.85, 0.70, 0.55, 0.50, 0.55, 0.65, 0.90, 1.15, 1.35]),
    "beach": np.array([1.40, 1.30, 1.00, 0.60, 0.40, 0.25, 0.30, 0.40, 0.60, 0.90, 1.20, 1.45]),
    "nature": np.array([0.80, 0.75, 0.90, 1.10, 1.40, 1.35, 0.80, 0.70, 0.75, 1.00, 0.90, 1.20]),
}

# (open, close); close < open means the venue stays open past midnight
OPERATING_HOURS: dict[str, tuple[int, int] | None] = {
    "default": (6, 18),
    "religious": (4, 22),
    "temple": (4, 21),
    "mosque": (5, 21),
    "church": (6, 20),
    "monument": (8, 18),
    "fort": (9, 17),
    "palace": (9, 17),
    "museum": (10, 17),
    "heritage": (8, 18),
    "nature": (6, 18),
    "waterfall": (7, 17),
    "wildlife": (7, 17),
    "nationalpark": (7, 17),
    "garden": (5, 20),
    "market": (10, 22),
    "nightlife": (20, 4),
    "cultural": (8, 18),
    "adventure": (7, 17),
    "entertainment": (9, 22),
    # open around the clock
    "beach": None,
    "hillstation": None,
    "hill-station": None,
    "resort": None,
    "lake": None,
    "dam": None,
    "viewpoint": None,
    "urban": None,
}

HOLIDAYS_2026: dict[date, Holiday] = {
    date(2026, 1, 26): Holiday("Republic Day", 1.5),
    date(2026, 3, 4): Holiday("Holi", 1.6),
    date(2026, 8, 15): Holiday("Independence Day", 1.6),
    date(2026, 10, 2): Holiday("Gandhi Jayanti", 1.4),
    date(2026, 10, 20): Holiday("Dussehra", 1.7),
    date(2026, 11, 10): Holiday("Diwali", 2.0),
    date(2026, 12, 25): Holiday("Christmas", 1.6),
    date(2026, 12, 31): Holiday("New Year Eve", 1.8),
}

# Days adjacent to a holiday carry part of its impact
NEAR_HOLIDAY_FACTOR = 0.7


@dataclass(frozen=True, eq=False)
class CalendarContext:
    """Everything time-related the fusion engine needs for one evaluation.

    Attributes:
        moment: The local time being evaluated.
        hourly_curve: 24 relative-busyness values for the destination category.
        category_curve: ``True`` when *hourly_curve* is category-specific
            rather than the default curve.
        holiday: Active holiday/special-day signal, if any.
        day_of_week_factor: Multiplier for the weekday.
        seasonal_factor: Multiplier for the month.
        is_open: Whether the destination is open at *moment*.
        closed_message: Explanation shown when not open.
    """

    moment: datetime
    hourly_curve: np.ndarray
    category_curve: bool = False
    holiday: Holiday | None = None
    day_of_week_factor: float = 1.0
    seasonal_factor: float = 1.0
    is_open: bool = True
    closed_message: str | None = None

    @property
    def hour(self) -> int:
        return self.moment.hour

    @property
    def time_of_day_factor(self) -> float:
        return float(self.hourly_curve[self.moment.hour])


class PatternCalendar:
    """Pattern-based calendar built from static curves and a holiday table.

    Args:
        holidays: Holiday table keyed by date. Defaults to the 2026 national list.
        hourly_patterns: Category → 24-value curve.  Must contain ``"default"``.
        operating_hours: Category → ``(open, close)`` or ``None`` for all-day.
    """

    def __init__(
        self,
        holidays: dict[date, Holiday] | None = None,
        hourly_patterns: dict[str, np.ndarray] | None = None,
        operating_hours: dict[str, tuple[int, int] | None] | None = None,
    ) -> None:
        self._holidays = HOLIDAYS_2026 if holidays is None else holidays
        self._hourly = HOURLY_PATTERNS if hourly_patterns is None else hourly_patterns
        self._hours = OPERATING_HOURS if operating_hours is None else operating_hours

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def context(self, snapshot: DestinationSnapshot, moment: datetime) -> CalendarContext:
        """Build the :class:`CalendarContext` for *snapshot* at *moment*."""
        curve, category_specific = self.hourly_curve(snapshot.category)
        is_open, message = self.open_status(snapshot, moment)
        day = moment.date()
        seasonal = SEASONAL_PATTERNS.get(snapshot.category, SEASONAL_PATTERNS["default"])
        return CalendarContext(
            moment=moment,
            hourly_curve=curve,
            category_curve=category_specific,
            holiday=self.holiday_for(day),
            day_of_week_factor=float(DAY_OF_WEEK_FACTORS[day.weekday()]),
            seasonal_factor=float(seasonal[day.month - 1]),
            is_open=is_open,
            closed_message=None if is_open else message,
        )

    def hourly_curve(self, category: str) -> tuple[np.ndarray, bool]:
        """Return ``(curve, is_category_specific)`` for *category*."""
        if category != DEFAULT_CATEGORY and category in self._hourly:
            return self._hourly[category], True
        return self._hourly[DEFAULT_CATEGORY], False

    def holiday_for(self, day: date) -> Holiday | None:
        """Return the holiday on *day*, or a weakened "Near …" holiday the day either side."""
        holiday = self._holidays.get(day)
        if holiday is not None:
            return holiday
        for neighbour in (day + timedelta(days=1), day - timedelta(days=1)):
            near = self._holidays.get(neighbour)
            if near is not None:
                return Holiday(f"Near {near.name}", near.impact * NEAR_HOLIDAY_FACTOR)
        return None

    def open_status(self, snapshot: DestinationSnapshot, moment: datetime) -> tuple[bool, str]:
        """Return ``(is_open, message)`` for *snapshot* at *moment*.

        Published hours on the snapshot take precedence over category defaults.
        """
        if snapshot.closed_weekday is not None and moment.weekday() == snapshot.closed_weekday:
            day_name = WEEKDAY_NAMES[snapshot.closed_weekday].capitalize()
            return False, f"Closed today • Closed every {day_name}"

        if snapshot.has_operating_hours:
            hours: tuple[int, int] | None = (snapshot.open_hour, snapshot.close_hour)
        else:
            hours = self._hours.get(snapshot.category, self._hours.get(DEFAULT_CATEGORY))

        if hours is None:
            return True, "Open 24 hours"

        open_hour, close_hour = hours
        hour = moment.hour
        if open_hour == close_hour or (open_hour == 0 and close_hour >= 24):
            return True, "Open 24 hours"
        if close_hour < open_hour:
            is_open = hour >= open_hour or hour < close_hour
            if is_open:
                return True, f"Open until {format_hour(close_hour)}"
            return False, f"Closed now • Opens at {format_hour(open_hour)}"

        if open_hour <= hour < close_hour:
            return True, f"Open until {format_hour(close_hour)}"
        if hour < open_hour:
            return False, f"Closed now • Opens at {format_hour(open_hour)}"
        return False, f"Closed now • Opens tomorrow at {format_hour(open_hour)}"


def format_hour(hour: int) -> str:
    """Format an hour (0–24) as ``"9:00 AM"``."""
    hour %= 24
    period = "PM" if hour >= 12 else "AM"
    display = 12 if hour % 12 == 0 else hour % 12
    return f"{display}:00 {period}"
