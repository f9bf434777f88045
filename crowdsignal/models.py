"""Core domain dataclasses shared across the fusion engine and the engagement ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class CrowdLevel(str, Enum):
    """Discrete crowd buckets reported to the rendering layer."""

    LOW = "low"
    MODERATE = "moderate"
    HEAVY = "heavy"
    OVERCROWDED = "overcrowded"
    CLOSED = "closed"


class WeatherCategory(str, Enum):
    """Weather buckets used for multiplier lookup.

    Declaration order matters: :class:`~crowdsignal.weather.WeatherImpactResolver`
    tests keywords in this order and the first match wins.
    """

    CLEAR = "CLEAR"
    CLOUDY = "CLOUDY"
    RAIN = "RAIN"
    HEAVY_RAIN = "HEAVY_RAIN"
    SNOW = "SNOW"
    EXTREME = "EXTREME"


class FeedbackKind(str, Enum):
    """How much effort the user put into a crowd report."""

    QUICK = "quick"
    DETAILED = "detailed"


# Numeric stand-ins for categorical base levels
CATEGORICAL_BASE_LEVELS: dict[str, float] = {
    "low": 25.0,
    "moderate": 45.0,
    "heavy": 65.0,
    "overcrowded": 85.0,
}

WEEKDAY_NAMES = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


def normalize_base_level(value: float | int | str) -> float:
    """Return a 0–100 numeric crowd level for a numeric or categorical input.

    Raises:
        ValueError: If *value* is an unknown label or outside [0, 100].
    """
    if isinstance(value, str):
        key = value.strip().lower()
        if key not in CATEGORICAL_BASE_LEVELS:
            raise ValueError(f"Unknown crowd level label {value!r}")
        return CATEGORICAL_BASE_LEVELS[key]
    level = float(value)
    if not 0.0 <= level <= 100.0:
        raise ValueError(f"Base crowd level must be between 0 and 100, got {value!r}")
    return level


def normalize_weekday(value: int | str | None) -> int | None:
    """Return a weekday index (0=Monday) for an index or an English day name."""
    if value is None:
        return None
    if isinstance(value, str):
        key = value.strip().lower()
        if key.isdigit():
            return normalize_weekday(int(key))
        for index, name in enumerate(WEEKDAY_NAMES):
            if key in (name, name[:3]):
                return index
        raise ValueError(f"Unknown weekday {value!r}")
    if not 0 <= value <= 6:
        raise ValueError(f"Weekday index must be between 0 and 6, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Crowd-signal fusion inputs and outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DestinationSnapshot:
    """Immutable view of a destination for one evaluation.

    Attributes:
        destination_id: Integer identifier, also the seed for visitor estimates.
        category: Free-form tag, normalised to lower-case and trimmed.
        base_crowd_level: Numeric level in [0, 100]. Categorical labels
            (``"low"`` … ``"overcrowded"``) are normalised on construction.
        open_hour: Opening hour (0–23) if the destination publishes hours.
        close_hour: Closing hour (1–24); may be lower than *open_hour* for
            venues that stay open past midnight.
        closed_weekday: Weekly closure day (0=Monday … 6=Sunday).
        average_visitors: Typical daily visitor count; ``None`` means unknown.
        name: Display name, informational only.
    """

    destination_id: int
    category: str = "default"
    base_crowd_level: float = 50.0
    open_hour: int | None = None
    close_hour: int | None = None
    closed_weekday: int | None = None
    average_visitors: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", (self.category or "default").strip().lower())
        object.__setattr__(self, "base_crowd_level", normalize_base_level(self.base_crowd_level))
        object.__setattr__(self, "closed_weekday", normalize_weekday(self.closed_weekday))

    @property
    def has_operating_hours(self) -> bool:
        return self.open_hour is not None and self.close_hour is not None


@dataclass(frozen=True)
class WeatherObservation:
    """Current weather at a destination. Only *condition* feeds the multiplier."""

    condition: str | None = None
    temperature: float | None = None


@dataclass(frozen=True)
class Festival:
    """A festival period affecting a set of destinations.

    Attributes:
        festival_id: Unique identifier from the reference data.
        name: Display name.
        start_date: First day of the festival (inclusive).
        end_date: Last day of the festival (inclusive).
        impact: Crowd multiplier; unbounded here, capped at 2.5 on lookup.
        destinations: Destination identifiers affected by the festival.
    """

    festival_id: str
    name: str
    start_date: date
    end_date: date
    impact: float
    destinations: frozenset[int] = frozenset()

    def is_active_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class Holiday:
    """A national holiday (or the day either side of one) with its impact."""

    name: str
    impact: float


@dataclass
class PredictionFactors:
    """Which signals backed a prediction, and the values that were applied.

    Attributes:
        holiday: Holiday label when a holiday/special-day signal is active.
        festival: ``True`` when a festival affects the destination today.
        weather: ``True`` when a weather condition was supplied.
        festival_names: Names of the active festivals, for display.
        weather_condition: The raw condition text, for display.
        time_of_day: Hourly curve value used.
        day_of_week: Day-of-week factor used.
        seasonal: Month factor used.
        holiday_impact: Holiday multiplier used (1.0 when none).
        festival_impact: Festival multiplier used (1.0 when none).
        weather_impact: Weather multiplier used (1.0 when none).
        is_weekend: Whether the prediction date falls on a weekend.
    """

    holiday: str | None = None
    festival: bool = False
    weather: bool = False
    festival_names: list[str] = field(default_factory=list)
    weather_condition: str | None = None
    time_of_day: float = 1.0
    day_of_week: float = 1.0
    seasonal: float = 1.0
    holiday_impact: float = 1.0
    festival_impact: float = 1.0
    weather_impact: float = 1.0
    is_weekend: bool = False


@dataclass
class PredictionResult:
    """Outcome of :meth:`~crowdsignal.fusion.CrowdFusionEngine.predict`.

    ``closed_message`` is set iff ``level`` is :attr:`CrowdLevel.CLOSED`;
    ``score`` and ``visitor_estimate`` are ``None`` in that case.
    """

    level: CrowdLevel
    confidence: int
    factors: PredictionFactors
    closed_message: str | None = None
    score: float | None = None
    visitor_estimate: int | None = None


# ---------------------------------------------------------------------------
# Engagement ledger
# ---------------------------------------------------------------------------


@dataclass
class FeedbackEvent:
    """A single crowd report submitted by a user.

    Attributes:
        kind: ``quick`` or ``detailed``; strings are coerced.
        destination_id: The destination reported on.
        predicted_level: Level the app displayed.
        reported_level: Level the user observed.
        accurate: Whether the user confirmed the prediction.
        timestamp: When the report was made; defaults to submission time.
        predicted_score: The 0–1 score behind *predicted_level*, if known.
    """

    kind: FeedbackKind
    destination_id: int | None
    predicted_level: str | None = None
    reported_level: str | None = None
    accurate: bool = False
    timestamp: datetime | None = None
    predicted_score: float | None = None

    def __post_init__(self) -> None:
        try:
            self.kind = FeedbackKind(self.kind)
        except ValueError:
            raise ValueError(f"Unknown feedback kind {self.kind!r}") from None


@dataclass
class DailyStat:
    """Per-day ledger record, keyed by ``YYYY-MM-DD`` in :class:`EngagementState`."""

    points: int = 0
    feedbacks: int = 0
    destinations: list[int] = field(default_factory=list)


@dataclass
class HistoryEntry:
    """One row of the bounded feedback history."""

    timestamp: str
    destination_id: int | None
    predicted_level: str | None
    reported_level: str | None
    accurate: bool
    points: int


@dataclass
class EngagementState:
    """Accumulated engagement record for one user/session.

    Attributes:
        points: Lifetime points.
        total_feedbacks: Lifetime number of reports.
        streak_days: Current run of consecutive reporting days.
        longest_streak: Longest run ever observed (always ≥ *streak_days*).
        last_feedback_date: ``YYYY-MM-DD`` of the latest report, or ``None``.
        daily_stats: Per-day records, pruned to the last 30 days.
        feedback_history: Latest reports, oldest first, at most 100.
        unique_destinations: Every destination ever reported on.
        weekend_feedbacks: Reports made on a Saturday or Sunday (UTC).
        accuracy_confirmed: Reports that confirmed the prediction.
        badges: Unlocked badge ids. Never shrinks.
        badges_pending: Unlocked badge ids not yet shown to the user.
        version: Schema version of the persisted record.
        created: ISO timestamp of first creation.
    """

    points: int = 0
    total_feedbacks: int = 0
    streak_days: int = 0
    longest_streak: int = 0
    last_feedback_date: str | None = None
    daily_stats: dict[str, DailyStat] = field(default_factory=dict)
    feedback_history: list[HistoryEntry] = field(default_factory=list)
    unique_destinations: set[int] = field(default_factory=set)
    weekend_feedbacks: int = 0
    accuracy_confirmed: int = 0
    badges: set[str] = field(default_factory=set)
    badges_pending: list[str] = field(default_factory=list)
    version: str = "1.0"
    created: str | None = None


@dataclass(frozen=True)
class AwardResult:
    """What a single :meth:`~crowdsignal.ledger.PointsLedger.award_points` call earned."""

    points_earned: int
    total_points: int
    streak: int
    first_feedback: bool


class CriteriaKind(str, Enum):
    """The six predicates a badge can unlock on."""

    TOTAL_FEEDBACKS = "total_feedbacks"
    WEEKEND_FEEDBACKS = "weekend_feedbacks"
    ACCURACY_CONFIRMED = "accuracy_confirmed"
    UNIQUE_DESTINATIONS = "unique_destinations"
    STREAK_DAYS = "streak_days"
    ACCURACY_RATE = "accuracy_rate"


@dataclass(frozen=True)
class BadgeCriteria:
    """Unlock rule: ``kind`` ≥ ``threshold`` (``min_feedbacks`` for accuracy rate)."""

    kind: CriteriaKind
    threshold: float
    min_feedbacks: int = 0


@dataclass(frozen=True)
class Badge:
    """A catalog badge."""

    badge_id: str
    name: str
    description: str
    icon: str
    criteria: BadgeCriteria
