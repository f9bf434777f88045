"""Key-value persistence for engagement state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from crowdsignal.models import DailyStat, EngagementState, HistoryEntry
from crowdsignal.timeutil import Clock, isoformat_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "crowdwise_gamification"


class KeyValueStore(ABC):
    """Minimal string-keyed blob store the ledger persists through."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value stored under *key*, or ``None``."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""


class InMemoryStore(KeyValueStore):
    """Process-local store; used in tests and for throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class JsonFileStore(KeyValueStore):
    """Stores every key in one JSON object on disk.

    Writes go to a temporary file that replaces the original, so a crash
    never leaves a half-written document behind.

    Args:
        path: Location of the JSON document. Created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Unreadable store file %s; treating it as empty.", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store file %s is not a JSON object; treating it as empty.", self._path)
            return {}
        return data


# ---------------------------------------------------------------------------
# State (de)serialisation
# ---------------------------------------------------------------------------


def state_to_dict(state: EngagementState) -> dict[str, Any]:
    """Serialise *state* to a JSON-ready dict. Sets become sorted lists."""
    return {
        "version": state.version,
        "created": state.created,
        "points": state.points,
        "totalFeedbacks": state.total_feedbacks,
        "streakDays": state.streak_days,
        "longestStreak": state.longest_streak,
        "lastFeedbackDate": state.last_feedback_date,
        "dailyStats": {
            key: {"points": s.points, "feedbacks": s.feedbacks, "destinations": list(s.destinations)}
            for key, s in state.daily_stats.items()
        },
        "feedbackHistory": [
            {
                "timestamp": e.timestamp,
                "destinationId": e.destination_id,
                "predictedLevel": e.predicted_level,
                "reportedLevel": e.reported_level,
                "accurate": e.accurate,
                "points": e.points,
            }
            for e in state.feedback_history
        ],
        "uniqueDestinations": sorted(state.unique_destinations),
        "weekendFeedbacks": state.weekend_feedbacks,
        "accuracyConfirmed": state.accuracy_confirmed,
        "badges": sorted(state.badges),
        "badgesPending": list(state.badges_pending),
    }


def state_from_dict(data: dict[str, Any]) -> EngagementState:
    """Rebuild an :class:`~crowdsignal.models.EngagementState` from :func:`state_to_dict` output.

    Missing fields take their defaults.

    Raises:
        TypeError: If *data* or one of its fields has the wrong shape.
        ValueError: If a numeric field cannot be converted.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Expected a JSON object, got {type(data).__name__}")

    daily_stats = {
        str(key): DailyStat(
            points=int(raw.get("points", 0)),
            feedbacks=int(raw.get("feedbacks", 0)),
            destinations=list(dict.fromkeys(int(d) for d in raw.get("destinations") or [])),
        )
        for key, raw in (data.get("dailyStats") or {}).items()
    }
    history = [
        HistoryEntry(
            timestamp=str(raw["timestamp"]),
            destination_id=_optional_int(raw.get("destinationId")),
            predicted_level=raw.get("predictedLevel"),
            reported_level=raw.get("reportedLevel"),
            accurate=bool(raw.get("accurate", False)),
            points=int(raw.get("points", 0)),
        )
        for raw in data.get("feedbackHistory") or []
    ]
    pending = [str(b) for b in data.get("badgesPending") or []]

    streak = int(data.get("streakDays", 0))
    return EngagementState(
        points=int(data.get("points", 0)),
        total_feedbacks=int(data.get("totalFeedbacks", 0)),
        streak_days=streak,
        longest_streak=max(int(data.get("longestStreak", 0)), streak),
        last_feedback_date=data.get("lastFeedbackDate"),
        daily_stats=daily_stats,
        feedback_history=history,
        unique_destinations={int(d) for d in data.get("uniqueDestinations") or []},
        weekend_feedbacks=int(data.get("weekendFeedbacks", 0)),
        accuracy_confirmed=int(data.get("accuracyConfirmed", 0)),
        badges={str(b) for b in data.get("badges") or []},
        badges_pending=list(dict.fromkeys(pending)),
        version=str(data.get("version") or "1.0"),
        created=data.get("created"),
    )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


class EngagementRepository:
    """Loads and saves one :class:`~crowdsignal.models.EngagementState` under a fixed key.

    A missing record yields a fresh empty state.  A corrupt record (invalid
    JSON or wrong shape) is logged and also replaced by a fresh state; it is
    never fatal.

    Args:
        store: The backing key-value store.
        storage_key: Key the serialised state lives under.
        clock: Used to stamp ``created`` on fresh states.
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str = DEFAULT_STORAGE_KEY,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._key = storage_key
        self._clock = clock

    @property
    def storage_key(self) -> str:
        return self._key

    def load(self) -> EngagementState:
        raw = self._store.get(self._key)
        if raw is None:
            return self.empty_state()
        try:
            return state_from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning(
                "Discarding unreadable engagement state under key %r; starting fresh.",
                self._key,
                exc_info=True,
            )
            return self.empty_state()

    def save(self, state: EngagementState) -> None:
        self._store.set(self._key, json.dumps(state_to_dict(state), ensure_ascii=False))

    def empty_state(self) -> EngagementState:
        return EngagementState(created=isoformat_utc(self._clock()))
