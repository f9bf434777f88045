"""Engagement service: one persisted ledger, mutated atomically per feedback event."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from crowdsignal.accuracy import AccuracyTracker, DestinationAccuracy
from crowdsignal.badges import BadgeEvaluator
from crowdsignal.ledger import PointsLedger
from crowdsignal.models import AwardResult, Badge, EngagementState, FeedbackEvent
from crowdsignal.storage import DEFAULT_STORAGE_KEY, EngagementRepository, KeyValueStore
from crowdsignal.timeutil import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackOutcome:
    """Result of :meth:`EngagementLedger.submit_feedback`."""

    award: AwardResult
    new_badges: list[Badge]
    destination_accuracy: DestinationAccuracy | None = None


class EngagementLedger:
    """Points, streaks and badges for one user, backed by a key-value store.

    Every mutating call is a single read-modify-write: load the state, apply
    the change, prune, save.  A re-entrant lock serialises writers sharing
    this instance; separate processes writing the same key are not
    coordinated.

    Args:
        store: Persistent key-value store.
        clock: Current-time source; all day keys use its UTC date.
        storage_key: Key the state is persisted under.
        badge_evaluator: Badge catalog/evaluator. Defaults to the built-in catalog.
        accuracy_tracker: Optional shared tracker that every submitted report
            is also recorded in.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        storage_key: str = DEFAULT_STORAGE_KEY,
        badge_evaluator: BadgeEvaluator | None = None,
        accuracy_tracker: AccuracyTracker | None = None,
    ) -> None:
        self._repository = EngagementRepository(store, storage_key, clock)
        self._points = PointsLedger(clock)
        self._badges = badge_evaluator or BadgeEvaluator()
        self._accuracy = accuracy_tracker
        self._lock = threading.RLock()

    @classmethod
    def for_user(
        cls,
        store: KeyValueStore,
        user_id: str,
        clock: Clock = utc_now,
        accuracy_tracker: AccuracyTracker | None = None,
    ) -> EngagementLedger:
        """Return a ledger whose state lives under a per-user key.

        Raises:
            ValueError: If *user_id* is empty.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        return cls(
            store,
            clock=clock,
            storage_key=f"{DEFAULT_STORAGE_KEY}:{user_id}",
            accuracy_tracker=accuracy_tracker,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def award_points(self, event: FeedbackEvent) -> AwardResult:
        """Record *event* and persist the updated state.

        Returns:
            The :class:`~crowdsignal.models.AwardResult` for this event.
        """
        with self._lock:
            state = self._repository.load()
            result = self._points.award_points(state, event)
            self._repository.save(state)
        logger.debug(
            "Feedback on destination %r earned %d points (total=%d, streak=%d).",
            event.destination_id,
            result.points_earned,
            result.total_points,
            result.streak,
        )
        return result

    def check_badges(self) -> list[Badge]:
        """Unlock newly satisfied badges, persist, and return them."""
        with self._lock:
            state = self._repository.load()
            unlocked = self._badges.check_badges(state)
            self._points.prune(state)
            self._repository.save(state)
        return unlocked

    def submit_feedback(self, event: FeedbackEvent) -> FeedbackOutcome:
        """Award points for *event* then check badges, as one persisted step.

        When an accuracy tracker is attached the report is recorded there too,
        after the ledger state has been saved.
        """
        with self._lock:
            state = self._repository.load()
            award = self._points.award_points(state, event)
            unlocked = self._badges.check_badges(state)
            self._repository.save(state)
        accuracy = self._accuracy.record_feedback(event) if self._accuracy is not None else None
        return FeedbackOutcome(award=award, new_badges=unlocked, destination_accuracy=accuracy)

    def acknowledge_pending(self) -> None:
        """Mark all pending badges as shown. Earned badges are unaffected."""
        with self._lock:
            state = self._repository.load()
            self._badges.acknowledge_pending(state)
            self._points.prune(state)
            self._repository.save(state)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self) -> EngagementState:
        with self._lock:
            return self._repository.load()

    def earned_badges(self) -> list[Badge]:
        return self._badges.earned(self.state())

    def pending_badges(self) -> list[Badge]:
        return self._badges.pending(self.state())

    def get_badge(self, badge_id: str) -> Badge | None:
        return self._badges.get_badge(badge_id)

    def today_points(self) -> int:
        return self._points.today_points(self.state())

    def streak(self) -> tuple[int, int]:
        """Return ``(current, longest)`` streak lengths."""
        return self._points.streak(self.state())

    def accuracy_rate(self) -> float | None:
        """Percentage of reports that confirmed the prediction, or ``None`` before any report."""
        state = self.state()
        if state.total_feedbacks == 0:
            return None
        return round(state.accuracy_confirmed / state.total_feedbacks * 100, 1)
