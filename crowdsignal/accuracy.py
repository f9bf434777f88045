"""Prediction accuracy tracker: per-destination and system-wide accuracy from crowd reports."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from crowdsignal.models import WEEKDAY_NAMES, FeedbackEvent
from crowdsignal.storage import KeyValueStore
from crowdsignal.timeutil import Clock, isoformat_utc, to_utc, utc_now

logger = logging.getLogger(__name__)

ACCURACY_STORAGE_KEY = "crowdwise_accuracy"

MIN_FEEDBACK_FOR_STATS = 5
MIN_FEEDBACK_FOR_TREND = 10
MIN_FEEDBACK_FOR_INSIGHTS = 10
MIN_SAMPLES_PER_BUCKET = 3
MAX_RECENT_ERRORS = 50
FEEDBACK_LOG_LIMIT = 100
TREND_MARGIN = 0.05

MEDIUM_CONFIDENCE_REPORTS = 10
HIGH_CONFIDENCE_REPORTS = 30

TOP_PERFORMER_ACCURACY = 70.0
NEEDS_IMPROVEMENT_ACCURACY = 50.0
SUMMARY_LIMIT = 5

# Representative 0–1 score of each reported level
LEVEL_SCORES: dict[str, float] = {
    "very_low": 0.1,
    "low": 0.3,
    "moderate": 0.5,
    "heavy": 0.7,
    "very_heavy": 0.85,
    "overcrowded": 0.95,
}

# (minimum accuracy %, level, message), best first
_STATUS_BANDS = (
    (80.0, "excellent", "System performing excellently"),
    (70.0, "good", "System performing well"),
    (60.0, "moderate", "System needs some improvement"),
    (50.0, "fair", "System accuracy is fair"),
)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class DestinationRecord:
    """Running accuracy counters for one destination."""

    name: str
    total_feedback: int = 0
    accurate_feedback: int = 0
    error_sum: float = 0.0
    recent_errors: list[float] = field(default_factory=list)
    last_update: str | None = None


@dataclass
class AccuracyLogEntry:
    """One report as seen by the tracker, kept for hour/weekday analysis."""

    destination_key: str
    predicted_level: str | None
    predicted_score: float | None
    reported_level: str | None
    accurate: bool
    kind: str
    timestamp: str
    hour: int
    day_of_week: int
    error: float | None = None


@dataclass
class AccuracyState:
    """Everything the tracker persists under its storage key."""

    version: int = 1
    created: str | None = None
    destinations: dict[str, DestinationRecord] = field(default_factory=dict)
    total_feedback: int = 0
    accurate_feedback: int = 0
    total_error: float = 0.0
    feedback_log: list[AccuracyLogEntry] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DestinationAccuracy:
    """Accuracy report for one destination.

    Attributes:
        accuracy: Percentage of confirmed reports, or ``None`` without data.
        avg_error: Mean absolute score error per report, or ``None``.
        feedback_count: Number of reports received.
        confidence: ``no_data``, ``low``, ``medium`` (≥10) or ``high`` (≥30).
        trend: ``improving``, ``declining``, ``stable`` or
            ``insufficient_data``; ``None`` without data.
        last_update: ISO timestamp of the latest report.
    """

    accuracy: float | None
    avg_error: float | None
    feedback_count: int
    confidence: str
    trend: str | None = None
    last_update: str | None = None


@dataclass(frozen=True)
class SystemStatus:
    level: str
    message: str


@dataclass(frozen=True)
class DestinationSummary:
    destination_key: str
    name: str
    accuracy: float
    feedback_count: int


@dataclass(frozen=True)
class SystemAccuracy:
    """System-wide accuracy report.

    ``avg_error`` is a whole percentage. Destinations with fewer than five
    reports count towards ``destination_count`` but are not ranked.
    """

    overall_accuracy: float | None
    total_feedback: int
    avg_error: int | None
    status: SystemStatus
    destination_count: int
    destinations_with_stats: int
    top_performing: list[DestinationSummary]
    needs_improvement: list[DestinationSummary]


@dataclass(frozen=True)
class AccuracyInsight:
    kind: str
    label: str
    accuracy: int
    samples: int
    message: str


@dataclass(frozen=True)
class AccuracyInsights:
    has_enough_data: bool
    total_feedback: int
    insights: list[AccuracyInsight] = field(default_factory=list)
    by_hour: dict[str, dict[str, int]] = field(default_factory=dict)
    by_day: dict[str, dict[str, int]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def calculate_trend(recent_errors: list[float]) -> str:
    """Compare the mean error of the older and newer halves of *recent_errors*."""
    if len(recent_errors) < MIN_FEEDBACK_FOR_TREND:
        return "insufficient_data"
    midpoint = len(recent_errors) // 2
    first = float(np.mean(recent_errors[:midpoint]))
    second = float(np.mean(recent_errors[midpoint:]))
    if second < first - TREND_MARGIN:
        return "improving"
    if second > first + TREND_MARGIN:
        return "declining"
    return "stable"


def calculate_system_status(accuracy: float) -> SystemStatus:
    """Map an overall accuracy percentage to a status band."""
    for minimum, level, message in _STATUS_BANDS:
        if accuracy >= minimum:
            return SystemStatus(level, message)
    return SystemStatus("needs_attention", "System needs significant improvement")


def report_error(event: FeedbackEvent) -> float | None:
    """Absolute gap between the predicted score and the reported level's score.

    Falls back to the predicted level's score when no numeric score was
    recorded. ``None`` when either side is unknown.
    """
    actual = LEVEL_SCORES.get(event.reported_level or "")
    if actual is None:
        return None
    predicted = event.predicted_score
    if predicted is None:
        predicted = LEVEL_SCORES.get(event.predicted_level or "")
    if predicted is None:
        return None
    return abs(float(predicted) - actual)


def destination_key(event: FeedbackEvent, name: str | None = None) -> str:
    if event.destination_id is not None:
        return str(event.destination_id)
    return (name or "unknown").strip().lower()


def _percent(part: int, whole: int) -> float:
    return part / whole * 100


# ---------------------------------------------------------------------------
# (De)serialisation
# ---------------------------------------------------------------------------


def accuracy_state_to_dict(state: AccuracyState) -> dict[str, Any]:
    return {
        "version": state.version,
        "createdAt": state.created,
        "destinations": {
            key: {
                "name": r.name,
                "totalFeedback": r.total_feedback,
                "accurateFeedback": r.accurate_feedback,
                "errorSum": r.error_sum,
                "recentErrors": list(r.recent_errors),
                "lastUpdate": r.last_update,
            }
            for key, r in state.destinations.items()
        },
        "globalStats": {
            "totalFeedback": state.total_feedback,
            "accurateFeedback": state.accurate_feedback,
            "totalError": state.total_error,
        },
        "feedbackLog": [
            {
                "destinationId": e.destination_key,
                "predictedLevel": e.predicted_level,
                "predictedScore": e.predicted_score,
                "userReportedLevel": e.reported_level,
                "isAccurate": e.accurate,
                "feedbackType": e.kind,
                "timestamp": e.timestamp,
                "hour": e.hour,
                "dayOfWeek": e.day_of_week,
                "error": e.error,
            }
            for e in state.feedback_log
        ],
    }


def accuracy_state_from_dict(data: dict[str, Any]) -> AccuracyState:
    """Rebuild an :class:`AccuracyState` from :func:`accuracy_state_to_dict` output.

    Raises:
        TypeError: If *data* or one of its fields has the wrong shape.
        ValueError: If a numeric field cannot be converted.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Expected a JSON object, got {type(data).__name__}")
    totals = data.get("globalStats") or {}
    return AccuracyState(
        version=int(data.get("version", 1)),
        created=data.get("createdAt"),
        destinations={
            str(key): DestinationRecord(
                name=str(raw.get("name") or key),
                total_feedback=int(raw.get("totalFeedback", 0)),
                accurate_feedback=int(raw.get("accurateFeedback", 0)),
                error_sum=float(raw.get("errorSum", 0.0)),
                recent_errors=[float(e) for e in raw.get("recentErrors") or []][-MAX_RECENT_ERRORS:],
                last_update=raw.get("lastUpdate"),
            )
            for key, raw in (data.get("destinations") or {}).items()
        },
        total_feedback=int(totals.get("totalFeedback", 0)),
        accurate_feedback=int(totals.get("accurateFeedback", 0)),
        total_error=float(totals.get("totalError", 0.0)),
        feedback_log=[
            AccuracyLogEntry(
                destination_key=str(raw["destinationId"]),
                predicted_level=raw.get("predictedLevel"),
                predicted_score=raw.get("predictedScore"),
                reported_level=raw.get("userReportedLevel"),
                accurate=bool(raw.get("isAccurate", False)),
                kind=str(raw.get("feedbackType") or "quick"),
                timestamp=str(raw["timestamp"]),
                hour=int(raw["hour"]),
                day_of_week=int(raw["dayOfWeek"]),
                error=raw.get("error"),
            )
            for raw in data.get("feedbackLog") or []
        ][-FEEDBACK_LOG_LIMIT:],
    )


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class AccuracyTracker:
    """Records how well predictions matched what users saw.

    State is shared by all users and persisted through a
    :class:`~crowdsignal.storage.KeyValueStore` under its own key.  A corrupt
    record is logged and replaced by an empty one.

    Args:
        store: Persistent key-value store.
        clock: Current-time source; hour and weekday buckets use its UTC time.
        storage_key: Key the tracker state is stored under.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        storage_key: str = ACCURACY_STORAGE_KEY,
    ) -> None:
        self._store = store
        self._clock = clock
        self._key = storage_key
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_feedback(self, event: FeedbackEvent, destination_name: str | None = None) -> DestinationAccuracy:
        """Fold *event* into the destination and global counters.

        Args:
            event: The submitted feedback.
            destination_name: Display name kept for the destination.

        Returns:
            The destination's updated :class:`DestinationAccuracy`.
        """
        now = self._clock()
        when = to_utc(event.timestamp or now)
        key = destination_key(event, destination_name)
        error = report_error(event)

        with self._lock:
            state = self._load()
            record = state.destinations.setdefault(
                key, DestinationRecord(name=destination_name or key)
            )
            record.total_feedback += 1
            if event.accurate:
                record.accurate_feedback += 1
            if error is not None:
                record.error_sum += error
                record.recent_errors.append(error)
                del record.recent_errors[:-MAX_RECENT_ERRORS]
            record.last_update = isoformat_utc(now)

            state.total_feedback += 1
            if event.accurate:
                state.accurate_feedback += 1
            if error is not None:
                state.total_error += error

            state.feedback_log.append(AccuracyLogEntry(
                destination_key=key,
                predicted_level=event.predicted_level,
                predicted_score=event.predicted_score,
                reported_level=event.reported_level,
                accurate=bool(event.accurate),
                kind=event.kind.value,
                timestamp=isoformat_utc(when),
                hour=when.hour,
                day_of_week=when.weekday(),
                error=error,
            ))
            del state.feedback_log[:-FEEDBACK_LOG_LIMIT]
            self._save(state)
            return self._destination_report(record)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def destination_accuracy(self, key: str | int) -> DestinationAccuracy:
        """Return the accuracy report for a destination id or name."""
        record = self._load().destinations.get(str(key).strip().lower())
        if record is None or record.total_feedback == 0:
            return DestinationAccuracy(accuracy=None, avg_error=None, feedback_count=0, confidence="no_data")
        return self._destination_report(record)

    def system_stats(self) -> SystemAccuracy:
        """Return overall accuracy with the best and worst ranked destinations."""
        state = self._load()
        if state.total_feedback == 0:
            return SystemAccuracy(
                overall_accuracy=None,
                total_feedback=0,
                avg_error=None,
                status=SystemStatus("no_data", "No feedback collected yet"),
                destination_count=0,
                destinations_with_stats=0,
                top_performing=[],
                needs_improvement=[],
            )

        overall = _percent(state.accurate_feedback, state.total_feedback)
        ranked = sorted(
            (
                DestinationSummary(
                    destination_key=key,
                    name=record.name,
                    accuracy=round(_percent(record.accurate_feedback, record.total_feedback), 1),
                    feedback_count=record.total_feedback,
                )
                for key, record in state.destinations.items()
                if record.total_feedback >= MIN_FEEDBACK_FOR_STATS
            ),
            key=lambda d: d.accuracy,
            reverse=True,
        )
        return SystemAccuracy(
            overall_accuracy=round(overall, 1),
            total_feedback=state.total_feedback,
            avg_error=round(state.total_error / state.total_feedback * 100),
            status=calculate_system_status(overall),
            destination_count=len(state.destinations),
            destinations_with_stats=len(ranked),
            top_performing=[d for d in ranked if d.accuracy >= TOP_PERFORMER_ACCURACY][:SUMMARY_LIMIT],
            needs_improvement=[d for d in ranked if d.accuracy < NEEDS_IMPROVEMENT_ACCURACY][:SUMMARY_LIMIT],
        )

    def insights(self) -> AccuracyInsights:
        """Flag hours and weekdays where fewer than half the predictions held up."""
        log = self._load().feedback_log
        if len(log) < MIN_FEEDBACK_FOR_INSIGHTS:
            return AccuracyInsights(has_enough_data=False, total_feedback=len(log))

        by_hour: dict[int, list[int]] = {}
        by_day: dict[int, list[int]] = {}
        for entry in log:
            for buckets, bucket in ((by_hour, entry.hour), (by_day, entry.day_of_week)):
                counts = buckets.setdefault(bucket, [0, 0])
                counts[0] += 1
                counts[1] += int(entry.accurate)

        insights = []
        for kind, buckets, label_of in (
            ("hour", by_hour, lambda h: f"{h}:00"),
            ("day", by_day, lambda d: WEEKDAY_NAMES[d].capitalize()),
        ):
            for bucket, (total, accurate) in sorted(buckets.items()):
                if total < MIN_SAMPLES_PER_BUCKET:
                    continue
                rate = round(_percent(accurate, total))
                if rate < NEEDS_IMPROVEMENT_ACCURACY:
                    label = label_of(bucket)
                    subject = f"Predictions at {label}" if kind == "hour" else f"{label} predictions"
                    insights.append(AccuracyInsight(
                        kind=kind,
                        label=label,
                        accuracy=rate,
                        samples=total,
                        message=f"{subject} are only {rate}% accurate",
                    ))

        return AccuracyInsights(
            has_enough_data=True,
            total_feedback=len(log),
            insights=insights,
            by_hour={str(h): _rates(c) for h, c in sorted(by_hour.items())},
            by_day={WEEKDAY_NAMES[d].capitalize(): _rates(c) for d, c in sorted(by_day.items())},
        )

    def export(self) -> AccuracyState:
        return self._load()

    def clear(self) -> None:
        with self._lock:
            self._save(self._empty_state())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _destination_report(record: DestinationRecord) -> DestinationAccuracy:
        if record.total_feedback >= HIGH_CONFIDENCE_REPORTS:
            confidence = "high"
        elif record.total_feedback >= MEDIUM_CONFIDENCE_REPORTS:
            confidence = "medium"
        else:
            confidence = "low"
        # averaged over every report, including those without an error reading
        avg_error = record.error_sum / record.total_feedback if record.error_sum > 0 else None
        return DestinationAccuracy(
            accuracy=round(_percent(record.accurate_feedback, record.total_feedback), 1),
            avg_error=round(avg_error, 2) if avg_error is not None else None,
            feedback_count=record.total_feedback,
            confidence=confidence,
            trend=calculate_trend(record.recent_errors),
            last_update=record.last_update,
        )

    def _load(self) -> AccuracyState:
        with self._lock:
            raw = self._store.get(self._key)
            if raw is None:
                return self._empty_state()
            try:
                return accuracy_state_from_dict(json.loads(raw))
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning(
                    "Discarding unreadable accuracy data under key %r; starting fresh.",
                    self._key,
                    exc_info=True,
                )
                return self._empty_state()

    def _save(self, state: AccuracyState) -> None:
        self._store.set(self._key, json.dumps(accuracy_state_to_dict(state)))

    def _empty_state(self) -> AccuracyState:
        return AccuracyState(created=isoformat_utc(self._clock()))


def _rates(counts: list[int]) -> dict[str, int]:
    total, accurate = counts
    return {"total": total, "accurate": accurate, "rate": round(_percent(accurate, total)) if total else 0}
