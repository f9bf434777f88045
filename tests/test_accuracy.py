"""Tests for crowdsignal.accuracy.AccuracyTracker."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from crowdsignal.accuracy import (
    ACCURACY_STORAGE_KEY,
    FEEDBACK_LOG_LIMIT,
    MAX_RECENT_ERRORS,
    AccuracyTracker,
    calculate_system_status,
    calculate_trend,
    destination_key,
    report_error,
)
from crowdsignal.models import FeedbackEvent, FeedbackKind
from crowdsignal.storage import InMemoryStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _report(
    destination_id: int | None = 1,
    accurate: bool = False,
    predicted: str | None = None,
    reported: str | None = None,
    **kwargs,
) -> FeedbackEvent:
    return FeedbackEvent(
        FeedbackKind.QUICK,
        destination_id,
        predicted_level=predicted,
        reported_level=reported,
        accurate=accurate,
        **kwargs,
    )


def _record_many(tracker: AccuracyTracker, destination_id: int, total: int, accurate: int) -> None:
    for i in range(total):
        tracker.record_feedback(_report(destination_id, accurate=i < accurate))


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestReportError:
    def test_uses_predicted_score(self) -> None:
        event = _report(reported="heavy", predicted_score=0.5)
        assert report_error(event) == pytest.approx(0.2)

    def test_falls_back_to_predicted_level(self) -> None:
        assert report_error(_report(predicted="low", reported="heavy")) == pytest.approx(0.4)

    def test_score_wins_over_level(self) -> None:
        event = _report(predicted="low", reported="overcrowded", predicted_score=0.9)
        assert report_error(event) == pytest.approx(0.05)

    def test_unknown_reported_level(self) -> None:
        assert report_error(_report(predicted="low", reported="packed")) is None

    def test_nothing_predicted(self) -> None:
        assert report_error(_report(reported="low")) is None


class TestCalculateTrend:
    def test_insufficient_data(self) -> None:
        assert calculate_trend([0.1] * 9) == "insufficient_data"

    def test_improving(self) -> None:
        assert calculate_trend([0.4] * 5 + [0.1] * 5) == "improving"

    def test_declining(self) -> None:
        assert calculate_trend([0.1] * 5 + [0.4] * 5) == "declining"

    def test_stable_within_margin(self) -> None:
        assert calculate_trend([0.20] * 5 + [0.23] * 5) == "stable"

    def test_odd_length_splits_at_floor_midpoint(self) -> None:
        # halves are [0.5]*5 and [0.5, 0.0 × 5]; mean 0.083 < 0.45
        assert calculate_trend([0.5] * 6 + [0.0] * 5) == "improving"


@pytest.mark.parametrize(
    "accuracy, level",
    [
        (95.0, "excellent"),
        (80.0, "excellent"),
        (79.9, "good"),
        (70.0, "good"),
        (65.0, "moderate"),
        (50.0, "fair"),
        (49.9, "needs_attention"),
        (0.0, "needs_attention"),
    ],
)
def test_system_status_bands(accuracy, level) -> None:
    assert calculate_system_status(accuracy).level == level


class TestDestinationKey:
    def test_id_preferred(self) -> None:
        assert destination_key(_report(42), "Taj Mahal") == "42"

    def test_name_when_no_id(self) -> None:
        assert destination_key(_report(None), " Taj Mahal ") == "taj mahal"

    def test_unknown(self) -> None:
        assert destination_key(_report(None)) == "unknown"


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------


class TestRecordFeedback:
    def test_first_report(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        report = tracker.record_feedback(_report(1, accurate=True, predicted="low", reported="heavy"))
        assert report.accuracy == 100.0
        assert report.avg_error == pytest.approx(0.4)
        assert report.feedback_count == 1
        assert report.confidence == "low"
        assert report.trend == "insufficient_data"
        assert report.last_update == "2026-06-10T12:00:00+00:00"

    def test_accuracy_rounded(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=3, accurate=2)
        assert tracker.destination_accuracy(1).accuracy == 66.7

    def test_avg_error_none_without_errors(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        assert tracker.record_feedback(_report(1, accurate=True)).avg_error is None

    def test_avg_error_divides_by_all_reports(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        tracker.record_feedback(_report(1, predicted="low", reported="heavy"))
        report = tracker.record_feedback(_report(1, accurate=True))
        assert report.avg_error == pytest.approx(0.2)

    @pytest.mark.parametrize("reports, confidence", [(9, "low"), (10, "medium"), (29, "medium"), (30, "high")])
    def test_confidence_tiers(self, store, clock, reports, confidence) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=reports, accurate=0)
        assert tracker.destination_accuracy(1).confidence == confidence

    def test_trend_from_recent_errors(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        for _ in range(5):
            tracker.record_feedback(_report(1, predicted="very_low", reported="overcrowded"))
        for _ in range(5):
            tracker.record_feedback(_report(1, predicted="heavy", reported="heavy"))
        assert tracker.destination_accuracy(1).trend == "improving"

    def test_recent_errors_bounded(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        for _ in range(MAX_RECENT_ERRORS + 10):
            tracker.record_feedback(_report(1, predicted="low", reported="moderate"))
        record = tracker.export().destinations["1"]
        assert len(record.recent_errors) == MAX_RECENT_ERRORS
        assert record.total_feedback == MAX_RECENT_ERRORS + 10

    def test_feedback_log_bounded(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        for dest in range(FEEDBACK_LOG_LIMIT + 5):
            tracker.record_feedback(_report(dest))
        state = tracker.export()
        assert len(state.feedback_log) == FEEDBACK_LOG_LIMIT
        assert state.feedback_log[0].destination_key == "5"
        assert state.total_feedback == FEEDBACK_LOG_LIMIT + 5

    def test_named_destination(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        tracker.record_feedback(_report(None, accurate=True), destination_name="Taj Mahal")
        assert tracker.destination_accuracy("Taj Mahal").feedback_count == 1
        assert tracker.export().destinations["taj mahal"].name == "Taj Mahal"

    def test_unknown_destination(self, store, clock) -> None:
        report = AccuracyTracker(store, clock).destination_accuracy(99)
        assert report.accuracy is None
        assert report.feedback_count == 0
        assert report.confidence == "no_data"


# ---------------------------------------------------------------------------
# System statistics
# ---------------------------------------------------------------------------


class TestSystemStats:
    def test_no_data(self, store, clock) -> None:
        stats = AccuracyTracker(store, clock).system_stats()
        assert stats.overall_accuracy is None
        assert stats.status.level == "no_data"
        assert stats.top_performing == []

    def test_ranking_and_gating(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=5, accurate=5)
        _record_many(tracker, 2, total=5, accurate=1)
        _record_many(tracker, 3, total=2, accurate=0)
        stats = tracker.system_stats()
        assert stats.overall_accuracy == 50.0
        assert stats.total_feedback == 12
        assert stats.status.level == "fair"
        assert stats.destination_count == 3
        assert stats.destinations_with_stats == 2
        assert [d.destination_key for d in stats.top_performing] == ["1"]
        assert [d.destination_key for d in stats.needs_improvement] == ["2"]
        assert stats.needs_improvement[0].accuracy == 20.0

    def test_middle_band_in_neither_list(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=5, accurate=3)
        stats = tracker.system_stats()
        assert stats.top_performing == []
        assert stats.needs_improvement == []

    def test_top_performers_limited(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        for dest in range(7):
            _record_many(tracker, dest, total=5, accurate=5)
        assert len(tracker.system_stats().top_performing) == 5

    def test_avg_error_is_whole_percent(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        tracker.record_feedback(_report(1, reported="heavy", predicted_score=0.5))
        tracker.record_feedback(_report(1, reported="heavy", predicted_score=0.5))
        assert tracker.system_stats().avg_error == 20


# ---------------------------------------------------------------------------
# Insights
# ---------------------------------------------------------------------------


class TestInsights:
    def test_not_enough_data(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=9, accurate=0)
        insights = tracker.insights()
        assert insights.has_enough_data is False
        assert insights.total_feedback == 9

    def test_flags_weak_hour_and_day(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=10, accurate=3)
        insights = tracker.insights()
        assert insights.has_enough_data is True
        assert [i.message for i in insights.insights] == [
            "Predictions at 12:00 are only 30% accurate",
            "Wednesday predictions are only 30% accurate",
        ]
        assert insights.by_hour == {"12": {"total": 10, "accurate": 3, "rate": 30}}
        assert insights.by_day == {"Wednesday": {"total": 10, "accurate": 3, "rate": 30}}

    def test_accurate_buckets_not_flagged(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=10, accurate=5)
        assert tracker.insights().insights == []

    def test_small_buckets_skipped(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        _record_many(tracker, 1, total=10, accurate=10)
        clock.advance(hours=3)
        _record_many(tracker, 1, total=2, accurate=0)
        assert tracker.insights().insights == []

    def test_event_timestamp_sets_bucket(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        # 2026-06-08 is a Monday
        seen_at = datetime(2026, 6, 8, 7, 30, tzinfo=timezone.utc)
        for _ in range(10):
            tracker.record_feedback(_report(1, timestamp=seen_at))
        insights = tracker.insights()
        assert list(insights.by_hour) == ["7"]
        assert list(insights.by_day) == ["Monday"]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_survives_new_instance(self, store, clock) -> None:
        AccuracyTracker(store, clock).record_feedback(_report(1, accurate=True))
        assert AccuracyTracker(store, clock).destination_accuracy(1).feedback_count == 1

    def test_stored_shape(self, store, clock) -> None:
        AccuracyTracker(store, clock).record_feedback(_report(3, accurate=True, predicted="low", reported="low"))
        saved = json.loads(store.get(ACCURACY_STORAGE_KEY))
        assert saved["globalStats"]["totalFeedback"] == 1
        assert saved["destinations"]["3"]["accurateFeedback"] == 1
        entry = saved["feedbackLog"][0]
        assert entry["userReportedLevel"] == "low"
        assert entry["isAccurate"] is True
        assert entry["hour"] == 12
        assert entry["dayOfWeek"] == 2

    @pytest.mark.parametrize("raw", ["not json", "[]", json.dumps({"feedbackLog": [{"hour": 1}]})])
    def test_corrupt_record_restarts(self, clock, raw) -> None:
        store = InMemoryStore({ACCURACY_STORAGE_KEY: raw})
        tracker = AccuracyTracker(store, clock)
        assert tracker.system_stats().status.level == "no_data"
        assert tracker.record_feedback(_report(1)).feedback_count == 1

    def test_clear(self, store, clock) -> None:
        tracker = AccuracyTracker(store, clock)
        tracker.record_feedback(_report(1))
        tracker.clear()
        assert tracker.system_stats().total_feedback == 0

    def test_custom_storage_key(self, store, clock) -> None:
        AccuracyTracker(store, clock, storage_key="elsewhere").record_feedback(_report(1))
        assert store.get("elsewhere") is not None
        assert store.get(ACCURACY_STORAGE_KEY) is None
