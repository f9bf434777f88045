"""Tests for crowdsignal.fusion.CrowdFusionEngine and its helpers."""

from __future__ import annotations

from datetime import date, datetime

import numpy as np
import pytest

from crowdsignal.calendars import CalendarContext, PatternCalendar
from crowdsignal.fusion import (
    CONFIDENCE_CAP,
    CONFIDENCE_FLOOR,
    OUTLOOK_HOURS,
    CrowdFusionEngine,
    confidence_score,
    score_to_level,
    visitor_estimate,
)
from crowdsignal.models import CrowdLevel, DestinationSnapshot, Holiday, WeatherObservation
from crowdsignal.weather import WeatherImpactResolver

WEDNESDAY_NOON = datetime(2026, 6, 10, 12, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flat_context(
    value: float = 1.0,
    moment: datetime = WEDNESDAY_NOON,
    **kwargs,
) -> CalendarContext:
    """Context whose every calendar factor is neutral except the flat hourly *value*."""
    return CalendarContext(moment=moment, hourly_curve=np.full(24, value), **kwargs)


def _engine(festivals) -> CrowdFusionEngine:
    return CrowdFusionEngine(WeatherImpactResolver(), festivals)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestScoreToLevel:
    @pytest.mark.parametrize("score, level", [
        (0.0, CrowdLevel.LOW),
        (0.2499, CrowdLevel.LOW),
        (0.25, CrowdLevel.MODERATE),
        (0.4999, CrowdLevel.MODERATE),
        (0.5, CrowdLevel.HEAVY),
        (0.75, CrowdLevel.OVERCROWDED),
        (1.0, CrowdLevel.OVERCROWDED),
    ])
    def test_buckets(self, score, level) -> None:
        assert score_to_level(score) is level


class TestVisitorEstimate:
    def test_known_value(self) -> None:
        assert visitor_estimate(42, 12) == 6124

    def test_deterministic(self) -> None:
        assert visitor_estimate(7, 15, 1200) == visitor_estimate(7, 15, 1200)

    def test_off_peak_range(self) -> None:
        estimate = visitor_estimate(42, 8)
        assert 5000 * 0.7 * 0.9 <= estimate <= 5000 * 0.7 * 1.1

    def test_uses_average_visitors(self) -> None:
        assert visitor_estimate(42, 12, 10000) == pytest.approx(2 * visitor_estimate(42, 12), abs=1)

    @pytest.mark.parametrize("hour", [-1, 24])
    def test_rejects_invalid_hour(self, hour) -> None:
        with pytest.raises(ValueError):
            visitor_estimate(42, hour)


class TestConfidenceScore:
    def test_floor(self) -> None:
        assert confidence_score(
            holiday=False, festival=False, weather=False,
            category_curve=False, operating_hours=False, weekly_closure=False,
        ) == CONFIDENCE_FLOOR

    def test_bonuses_add(self) -> None:
        assert confidence_score(
            holiday=True, festival=False, weather=True,
            category_curve=False, operating_hours=True, weekly_closure=False,
        ) == 65 + 3 + 1 + 2

    def test_cap(self) -> None:
        assert confidence_score(
            holiday=True, festival=True, weather=True,
            category_curve=True, operating_hours=True, weekly_closure=True,
        ) == CONFIDENCE_CAP


# ---------------------------------------------------------------------------
# predict
# ---------------------------------------------------------------------------


class TestPredict:
    def test_neutral_signals(self, empty_festivals) -> None:
        result = _engine(empty_festivals).predict(DestinationSnapshot(1), None, _flat_context())
        assert result.score == pytest.approx(0.5)
        assert result.level is CrowdLevel.HEAVY
        assert result.confidence == CONFIDENCE_FLOOR
        assert result.closed_message is None
        assert result.factors.festival is False
        assert result.factors.weather is False

    def test_multiplier_floor(self, empty_festivals) -> None:
        result = _engine(empty_festivals).predict(DestinationSnapshot(1), None, _flat_context(0.05))
        # 0.05 is lifted to 0.2 before scaling by the base level
        assert result.score == pytest.approx(0.1)
        assert result.level is CrowdLevel.LOW

    def test_multiplier_cap_and_score_clip(self, empty_festivals) -> None:
        ctx = _flat_context(2.0, day_of_week_factor=2.0)
        result = _engine(empty_festivals).predict(DestinationSnapshot(1, base_crowd_level=90), None, ctx)
        assert result.score == pytest.approx(1.0)
        assert result.level is CrowdLevel.OVERCROWDED

    def test_score_bounded(self, empty_festivals) -> None:
        engine = _engine(empty_festivals)
        for base in (0, 25, 50, 100):
            for value in (0.0, 0.5, 1.0, 5.0):
                result = engine.predict(DestinationSnapshot(1, base_crowd_level=base), None, _flat_context(value))
                assert 0.0 <= result.score <= 1.0
                assert CONFIDENCE_FLOOR <= result.confidence <= CONFIDENCE_CAP

    def test_festival_signal(self, loaded_festivals) -> None:
        snap = DestinationSnapshot(42, base_crowd_level=20)
        result = _engine(loaded_festivals).predict(snap, None, _flat_context())
        assert result.factors.festival is True
        assert result.factors.festival_names == ["Harvest Fair", "Camel Fair"]
        assert result.factors.festival_impact == pytest.approx(2.5)
        assert result.score == pytest.approx(0.5)
        assert result.confidence == CONFIDENCE_FLOOR + 2

    def test_festival_elsewhere_is_ignored(self, loaded_festivals) -> None:
        result = _engine(loaded_festivals).predict(DestinationSnapshot(999), None, _flat_context())
        assert result.factors.festival is False
        assert result.factors.festival_impact == 1.0

    def test_weather_signal(self, empty_festivals, beach_snapshot) -> None:
        weather = WeatherObservation(condition="heavy rain", temperature=24.0)
        result = _engine(empty_festivals).predict(beach_snapshot, weather, _flat_context())
        assert result.factors.weather is True
        assert result.factors.weather_condition == "heavy rain"
        assert result.factors.weather_impact == pytest.approx(0.2)
        assert result.score == pytest.approx(0.12)
        assert result.level is CrowdLevel.LOW
        assert result.confidence == CONFIDENCE_FLOOR + 1

    @pytest.mark.parametrize("weather", [None, WeatherObservation(), WeatherObservation(condition="  ")])
    def test_missing_weather_is_neutral(self, empty_festivals, beach_snapshot, weather) -> None:
        result = _engine(empty_festivals).predict(beach_snapshot, weather, _flat_context())
        assert result.factors.weather is False
        assert result.factors.weather_impact == 1.0

    def test_holiday_signal(self, empty_festivals) -> None:
        ctx = _flat_context(holiday=Holiday("Diwali", 2.0))
        result = _engine(empty_festivals).predict(DestinationSnapshot(1, base_crowd_level=30), None, ctx)
        assert result.factors.holiday == "Diwali"
        assert result.factors.holiday_impact == pytest.approx(2.0)
        assert result.score == pytest.approx(0.6)
        assert result.confidence == CONFIDENCE_FLOOR + 3

    def test_all_signals_cap_confidence(self, loaded_festivals, monument_snapshot) -> None:
        ctx = _flat_context(category_curve=True, holiday=Holiday("Diwali", 1.0))
        result = _engine(loaded_festivals).predict(monument_snapshot, WeatherObservation("sunny"), ctx)
        assert result.confidence == CONFIDENCE_CAP

    def test_closed(self, loaded_festivals, monument_snapshot) -> None:
        ctx = _flat_context(is_open=False, closed_message="Closed today • Closed every Monday")
        result = _engine(loaded_festivals).predict(monument_snapshot, WeatherObservation("sunny"), ctx)
        assert result.level is CrowdLevel.CLOSED
        assert result.closed_message == "Closed today • Closed every Monday"
        assert result.score is None
        assert result.visitor_estimate is None
        assert CONFIDENCE_FLOOR <= result.confidence <= CONFIDENCE_CAP

    def test_visitor_estimate_attached(self, empty_festivals) -> None:
        result = _engine(empty_festivals).predict(DestinationSnapshot(42), None, _flat_context())
        assert result.visitor_estimate == 6124

    def test_weekend_flag(self, empty_festivals) -> None:
        saturday = datetime(2026, 6, 13, 12, 0)
        result = _engine(empty_festivals).predict(DestinationSnapshot(1), None, _flat_context(moment=saturday))
        assert result.factors.is_weekend is True


# ---------------------------------------------------------------------------
# Calendar-driven helpers
# ---------------------------------------------------------------------------


class TestPredictAt:
    def test_uses_pattern_calendar(self, empty_festivals, monument_snapshot) -> None:
        result = _engine(empty_festivals).predict_at(monument_snapshot, None, WEDNESDAY_NOON)
        assert result.level is not CrowdLevel.CLOSED
        # category curve + published hours + weekly closure
        assert result.confidence == CONFIDENCE_FLOOR + 3 + 2 + 2
        assert result.visitor_estimate == 6124

    def test_weekly_closure(self, empty_festivals, monument_snapshot) -> None:
        result = _engine(empty_festivals).predict_at(monument_snapshot, None, datetime(2026, 6, 15, 12, 0))
        assert result.level is CrowdLevel.CLOSED
        assert result.closed_message == "Closed today • Closed every Monday"

    def test_custom_calendar(self, empty_festivals) -> None:
        calendar = PatternCalendar(holidays={date(2026, 6, 10): Holiday("Local Fair", 1.5)})
        engine = CrowdFusionEngine(WeatherImpactResolver(), empty_festivals, calendar)
        result = engine.predict_at(DestinationSnapshot(1), None, WEDNESDAY_NOON)
        assert result.factors.holiday == "Local Fair"


class TestHourlyOutlook:
    def test_covers_daytime_hours(self, empty_festivals, monument_snapshot) -> None:
        outlook = _engine(empty_festivals).hourly_outlook(monument_snapshot, None, WEDNESDAY_NOON)
        assert [h.hour for h in outlook] == list(OUTLOOK_HOURS)
        assert [h.hour for h in outlook if h.is_open] == list(range(9, 17))
        assert outlook[0].label == "6:00 AM"
        assert outlook[0].score is None


class TestBestTime:
    def test_quietest_remaining_hour(self, empty_festivals, monument_snapshot) -> None:
        best = _engine(empty_festivals).best_time(monument_snapshot, None, WEDNESDAY_NOON)
        assert best.hour == 14
        assert best.label == "2:00 PM"

    def test_falls_back_to_whole_day_after_closing(self, empty_festivals, monument_snapshot) -> None:
        evening = WEDNESDAY_NOON.replace(hour=19)
        best = _engine(empty_festivals).best_time(monument_snapshot, None, evening)
        assert best is not None
        assert best.is_open

    def test_closed_all_day(self, empty_festivals, monument_snapshot) -> None:
        monday = datetime(2026, 6, 15, 8, 0)
        assert _engine(empty_festivals).best_time(monument_snapshot, None, monday) is None


class TestForecast:
    def test_one_entry_per_day(self, empty_festivals, beach_snapshot) -> None:
        forecast = _engine(empty_festivals).forecast(beach_snapshot, None, WEDNESDAY_NOON, days=3)
        assert [f.day for f in forecast] == [date(2026, 6, 11), date(2026, 6, 12), date(2026, 6, 13)]
        assert [f.is_weekend for f in forecast] == [False, False, True]
        for day in forecast:
            assert 0.0 <= day.average_score <= day.peak_score <= 1.0
            assert day.level is not CrowdLevel.CLOSED

    def test_closed_day(self, empty_festivals, monument_snapshot) -> None:
        sunday = datetime(2026, 6, 14, 12, 0)
        (monday,) = _engine(empty_festivals).forecast(monument_snapshot, None, sunday, days=1)
        assert monday.level is CrowdLevel.CLOSED
        assert monday.peak_hour is None
        assert monday.average_score == 0.0

    def test_holiday_named(self, empty_festivals, beach_snapshot) -> None:
        (day,) = _engine(empty_festivals).forecast(beach_snapshot, None, datetime(2026, 8, 14, 9, 0), days=1)
        assert day.holiday == "Independence Day"

    def test_default_horizon(self, empty_festivals, beach_snapshot) -> None:
        assert len(_engine(empty_festivals).forecast(beach_snapshot, None, WEDNESDAY_NOON)) == 30
