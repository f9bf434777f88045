"""Crowd fusion engine: combines base level, calendar, weather and festival signals."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

import numpy as np

from crowdsignal.calendars import CalendarContext, PatternCalendar, format_hour
from crowdsignal.festivals import FestivalImpactResolver
from crowdsignal.models import (
    CrowdLevel,
    DestinationSnapshot,
    PredictionFactors,
    PredictionResult,
    WeatherObservation,
)
from crowdsignal.weather import WeatherImpactResolver

logger = logging.getLogger(__name__)

# Confidence accounting
CONFIDENCE_FLOOR = 65
CONFIDENCE_CAP = 75
BONUS_HOLIDAY = 3
BONUS_FESTIVAL = 2
BONUS_WEATHER = 1
BONUS_CATEGORY_CURVE = 3
BONUS_OPERATING_HOURS = 2
BONUS_WEEKLY_CLOSURE = 2

# Combined multiplier bounds
MULTIPLIER_FLOOR = 0.2
MULTIPLIER_CAP = 3.0

# Upper score bounds for each level; anything above the last is overcrowded
_LEVEL_THRESHOLDS = (
    (0.25, CrowdLevel.LOW),
    (0.50, CrowdLevel.MODERATE),
    (0.75, CrowdLevel.HEAVY),
)

# Visitor estimate
DEFAULT_AVERAGE_VISITORS = 5000
PEAK_HOURS = range(10, 17)
PEAK_TIME_MULTIPLIER = 1.3
OFF_PEAK_TIME_MULTIPLIER = 0.7
ESTIMATE_VARIANCE = 0.2
_SEED_ID_FACTOR = 9301
_SEED_HOUR_FACTOR = 49297
_SEED_MODULUS = 233280

# Outlook / forecast
OUTLOOK_HOURS = range(6, 22)
FORECAST_SAMPLE_HOURS = (9, 14, 18)
FORECAST_PEAK_HOURS = range(6, 21)


@dataclass(frozen=True)
class HourlyOutlook:
    """Predicted crowd for one hour of a day."""

    hour: int
    label: str
    level: CrowdLevel
    score: float | None
    is_open: bool


@dataclass(frozen=True)
class DailyForecast:
    """Predicted crowd for one day, averaged over representative hours.

    ``level`` is :attr:`CrowdLevel.CLOSED` when none of the representative
    hours are open.
    """

    day: date
    level: CrowdLevel
    average_score: float
    peak_score: float
    peak_hour: str | None
    quietest_hour: str | None
    holiday: str | None
    is_weekend: bool


def score_to_level(score: float) -> CrowdLevel:
    """Bucket a 0–1 crowd score into a :class:`~crowdsignal.models.CrowdLevel`."""
    for upper, level in _LEVEL_THRESHOLDS:
        if score < upper:
            return level
    return CrowdLevel.OVERCROWDED


def visitor_estimate(
    destination_id: int,
    hour: int,
    average_visitors: int | None = None,
) -> int:
    """Deterministic visitor estimate for *destination_id* at *hour*.

    The jitter is seeded from ``(destination_id, hour)`` only, so repeated
    evaluations within the same hour agree.

    Raises:
        ValueError: If *hour* is outside 0–23.
    """
    if not 0 <= hour <= 23:
        raise ValueError(f"Hour must be between 0 and 23, got {hour!r}")
    base = average_visitors or DEFAULT_AVERAGE_VISITORS
    time_multiplier = PEAK_TIME_MULTIPLIER if hour in PEAK_HOURS else OFF_PEAK_TIME_MULTIPLIER
    seed = ((destination_id * _SEED_ID_FACTOR + hour * _SEED_HOUR_FACTOR) % _SEED_MODULUS) / _SEED_MODULUS
    raw = base * time_multiplier * (1 + (seed - 0.5) * ESTIMATE_VARIANCE)
    # half-up, not banker's rounding
    return int(math.floor(raw + 0.5))


def confidence_score(
    *,
    holiday: bool,
    festival: bool,
    weather: bool,
    category_curve: bool,
    operating_hours: bool,
    weekly_closure: bool,
) -> int:
    """Sum the signal bonuses onto the floor of 65, capped at 75."""
    total = CONFIDENCE_FLOOR
    total += BONUS_HOLIDAY if holiday else 0
    total += BONUS_FESTIVAL if festival else 0
    total += BONUS_WEATHER if weather else 0
    total += BONUS_CATEGORY_CURVE if category_curve else 0
    total += BONUS_OPERATING_HOURS if operating_hours else 0
    total += BONUS_WEEKLY_CLOSURE if weekly_closure else 0
    return min(total, CONFIDENCE_CAP)


class CrowdFusionEngine:
    """Turns a destination snapshot and its signals into a :class:`PredictionResult`.

    The engine calls the weather and festival resolvers and combines their
    multipliers with the calendar curves:

    ``score = clip(base / 100 × clip(time × day × season × holiday × festival × weather, 0.2, 3.0), 0, 1)``

    It owns the level bucketing, the confidence accounting and the visitor
    estimate.  :meth:`predict` has no side effects beyond the festival
    resolver's lookup cache.

    Args:
        weather_resolver: Weather multiplier lookup.
        festival_resolver: Festival impact lookup.
        calendar: Builds :class:`CalendarContext` objects for the outlook and
            forecast helpers.  Defaults to :class:`PatternCalendar`.
    """

    def __init__(
        self,
        weather_resolver: WeatherImpactResolver,
        festival_resolver: FestivalImpactResolver,
        calendar: PatternCalendar | None = None,
    ) -> None:
        self._weather = weather_resolver
        self._festivals = festival_resolver
        self._calendar = calendar or PatternCalendar()

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        context: CalendarContext,
    ) -> PredictionResult:
        """Predict the current crowd level at *snapshot*.

        Args:
            snapshot: The destination being evaluated.
            weather: Current weather, or ``None`` when unavailable.
            context: Calendar signals for the evaluation moment.

        Returns:
            A :class:`~crowdsignal.models.PredictionResult`.  Closed
            destinations get level ``closed``, a message, and no score or
            visitor estimate.
        """
        day = context.moment.date()
        factors = PredictionFactors(
            holiday=context.holiday.name if context.holiday else None,
            time_of_day=context.time_of_day_factor,
            day_of_week=context.day_of_week_factor,
            seasonal=context.seasonal_factor,
            holiday_impact=context.holiday.impact if context.holiday else 1.0,
            is_weekend=day.weekday() >= 5,
        )

        if not context.is_open:
            logger.debug("Destination %d closed at %s", snapshot.destination_id, context.moment)
            return PredictionResult(
                level=CrowdLevel.CLOSED,
                confidence=self._confidence(snapshot, context, factors),
                factors=factors,
                closed_message=context.closed_message or "Closed now",
            )

        festivals = self._festivals.festivals_for_destination(snapshot.destination_id, day)
        if festivals:
            factors.festival = True
            factors.festival_names = [f.name for f in festivals]
            factors.festival_impact = self._festivals.destination_impact(snapshot.destination_id, day)

        condition = weather.condition if weather is not None else None
        if isinstance(condition, str) and condition.strip():
            factors.weather = True
            factors.weather_condition = condition
            factors.weather_impact = self._weather.resolve_multiplier(snapshot.category, condition)

        combined = float(np.clip(
            np.prod([
                factors.time_of_day,
                factors.day_of_week,
                factors.seasonal,
                factors.holiday_impact,
                factors.festival_impact,
                factors.weather_impact,
            ]),
            MULTIPLIER_FLOOR,
            MULTIPLIER_CAP,
        ))
        score = float(np.clip(snapshot.base_crowd_level / 100 * combined, 0.0, 1.0))

        return PredictionResult(
            level=score_to_level(score),
            confidence=self._confidence(snapshot, context, factors),
            factors=factors,
            score=round(score, 2),
            visitor_estimate=visitor_estimate(
                snapshot.destination_id, context.hour, snapshot.average_visitors
            ),
        )

    def predict_at(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        moment: datetime,
    ) -> PredictionResult:
        """Predict using the engine's own calendar to build the context."""
        return self.predict(snapshot, weather, self._calendar.context(snapshot, moment))

    # ------------------------------------------------------------------
    # Outlooks
    # ------------------------------------------------------------------

    def hourly_outlook(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        day: datetime,
    ) -> list[HourlyOutlook]:
        """Return one :class:`HourlyOutlook` per hour from 6:00 to 21:00 on *day*."""
        outlook = []
        for hour in OUTLOOK_HOURS:
            result = self.predict_at(snapshot, weather, _at_hour(day, hour))
            outlook.append(HourlyOutlook(
                hour=hour,
                label=format_hour(hour),
                level=result.level,
                score=result.score,
                is_open=result.level is not CrowdLevel.CLOSED,
            ))
        return outlook

    def best_time(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        now: datetime,
    ) -> HourlyOutlook | None:
        """Return the least crowded open hour of today.

        Prefers hours from *now* onwards; when every open hour is already past,
        falls back to the quietest open hour of the day for planning.

        Returns:
            The chosen :class:`HourlyOutlook`, or ``None`` if closed all day.
        """
        outlook = [h for h in self.hourly_outlook(snapshot, weather, now) if h.is_open]
        if not outlook:
            return None
        upcoming = [h for h in outlook if h.hour >= now.hour]
        candidates = upcoming or outlook
        return min(candidates, key=lambda h: h.score or 0.0)

    def forecast(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        start: datetime,
        days: int = 30,
    ) -> list[DailyForecast]:
        """Return a daily forecast for the *days* days after *start*."""
        forecasts = []
        for offset in range(1, days + 1):
            day = start + timedelta(days=offset)
            forecasts.append(self._forecast_day(snapshot, weather, day))
        return forecasts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _forecast_day(
        self,
        snapshot: DestinationSnapshot,
        weather: WeatherObservation | None,
        day: datetime,
    ) -> DailyForecast:
        hourly = {
            h: self.predict_at(snapshot, weather, _at_hour(day, h)).score
            for h in FORECAST_PEAK_HOURS
        }
        scores = np.array(
            [hourly[h] for h in FORECAST_SAMPLE_HOURS if hourly[h] is not None], dtype=float
        )
        open_hours = [(h, s) for h, s in hourly.items() if s is not None]
        peak = max(open_hours, key=lambda hs: hs[1]) if open_hours else None
        quiet = min(open_hours, key=lambda hs: hs[1]) if open_hours else None

        holiday = self._calendar.holiday_for(day.date())
        average = float(scores.mean()) if scores.size else 0.0
        return DailyForecast(
            day=day.date(),
            level=score_to_level(average) if scores.size else CrowdLevel.CLOSED,
            average_score=round(average, 2),
            peak_score=round(float(scores.max()), 2) if scores.size else 0.0,
            peak_hour=format_hour(peak[0]) if peak else None,
            quietest_hour=format_hour(quiet[0]) if quiet else None,
            holiday=holiday.name if holiday else None,
            is_weekend=day.weekday() >= 5,
        )

    @staticmethod
    def _confidence(
        snapshot: DestinationSnapshot,
        context: CalendarContext,
        factors: PredictionFactors,
    ) -> int:
        return confidence_score(
            holiday=factors.holiday is not None,
            festival=factors.festival,
            weather=factors.weather,
            category_curve=context.category_curve,
            operating_hours=snapshot.has_operating_hours,
            weekly_closure=snapshot.closed_weekday is not None,
        )


def _at_hour(day: datetime, hour: int) -> datetime:
    return datetime.combine(day.date(), time(hour), tzinfo=day.tzinfo)
