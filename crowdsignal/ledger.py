"""Points ledger: converts feedback events into points, streaks and daily stats."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from crowdsignal.models import (
    AwardResult,
    DailyStat,
    EngagementState,
    FeedbackEvent,
    FeedbackKind,
    HistoryEntry,
)
from crowdsignal.timeutil import Clock, is_weekend, isoformat_utc, previous_day, to_date, utc_day, utc_now

logger = logging.getLogger(__name__)

QUICK_FEEDBACK_POINTS = 5
DETAILED_FEEDBACK_POINTS = 15
ACCURACY_BONUS = 10
STREAK_BONUS_PER_DAY = 5
MAX_STREAK_BONUS = 25
FIRST_FEEDBACK_BONUS = 20
DAILY_CAP = 50

HISTORY_LIMIT = 100
DAILY_STATS_RETENTION_DAYS = 30

_BASE_POINTS = {
    FeedbackKind.QUICK: QUICK_FEEDBACK_POINTS,
    FeedbackKind.DETAILED: DETAILED_FEEDBACK_POINTS,
}


class PointsLedger:
    """Applies feedback events to an :class:`~crowdsignal.models.EngagementState`.

    Per event, in order:

    1. **Streak**: same day as the last report: unchanged; the day after:
       +1; anything else: reset to 1.  ``longest_streak`` follows.
    2. **Points**: base (quick 5 / detailed 15) + 20 for the first report
       ever + 10 if accurate + ``min(streak × 5, 25)``, clamped to what is
       left of today's 50-point allowance.
    3. **Bookkeeping**: totals, today's stats, unique destinations, weekend
       and accuracy counters, history.  These advance even when the cap
       leaves nothing to earn.
    4. **Pruning**: history to the latest 100, daily stats to 30 days.

    All day arithmetic uses the UTC date of *clock*.

    Args:
        clock: Returns the current time. Defaults to UTC now.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def award_points(self, state: EngagementState, event: FeedbackEvent) -> AwardResult:
        """Apply *event* to *state* in place and return what it earned.

        Args:
            state: The ledger state to mutate.
            event: The submitted feedback.

        Returns:
            An :class:`~crowdsignal.models.AwardResult`.
        """
        now = self._clock()
        today = utc_day(now)
        first_feedback = state.total_feedbacks == 0

        self._update_streak(state, today)
        earned = self._calculate_points(state, event, today)

        state.points += earned
        state.total_feedbacks += 1

        stats = state.daily_stats.setdefault(today.isoformat(), DailyStat())
        stats.feedbacks += 1
        stats.points += earned
        if event.destination_id is not None:
            if event.destination_id not in stats.destinations:
                stats.destinations.append(event.destination_id)
            state.unique_destinations.add(event.destination_id)

        if is_weekend(today):
            state.weekend_feedbacks += 1
        if event.accurate:
            state.accuracy_confirmed += 1

        state.feedback_history.append(HistoryEntry(
            timestamp=isoformat_utc(event.timestamp or now),
            destination_id=event.destination_id,
            predicted_level=event.predicted_level,
            reported_level=event.reported_level,
            accurate=bool(event.accurate),
            points=earned,
        ))

        self.prune(state)

        if earned == 0:
            logger.debug("Daily cap reached for %s; feedback recorded without points.", today)
        return AwardResult(
            points_earned=earned,
            total_points=state.points,
            streak=state.streak_days,
            first_feedback=first_feedback,
        )

    def prune(self, state: EngagementState) -> None:
        """Drop history beyond the latest 100 entries and daily stats older than 30 days.

        A daily-stat key that is not a valid ``YYYY-MM-DD`` date is dropped too.
        """
        if len(state.feedback_history) > HISTORY_LIMIT:
            del state.feedback_history[:-HISTORY_LIMIT]

        cutoff = utc_day(self._clock()) - timedelta(days=DAILY_STATS_RETENTION_DAYS)
        for key in list(state.daily_stats):
            try:
                stale = to_date(key) < cutoff
            except ValueError:
                stale = True
            if stale:
                del state.daily_stats[key]

    def today_points(self, state: EngagementState) -> int:
        stats = state.daily_stats.get(utc_day(self._clock()).isoformat())
        return stats.points if stats else 0

    def streak(self, state: EngagementState) -> tuple[int, int]:
        """Return ``(current, longest)`` streak lengths."""
        return state.streak_days, state.longest_streak

    @staticmethod
    def point_values() -> dict[str, int]:
        return {
            "quick_feedback": QUICK_FEEDBACK_POINTS,
            "detailed_feedback": DETAILED_FEEDBACK_POINTS,
            "accuracy_bonus": ACCURACY_BONUS,
            "streak_bonus": STREAK_BONUS_PER_DAY,
            "max_streak_bonus": MAX_STREAK_BONUS,
            "first_feedback_bonus": FIRST_FEEDBACK_BONUS,
            "daily_cap": DAILY_CAP,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _update_streak(state: EngagementState, today: date) -> None:
        today_key = today.isoformat()
        if state.last_feedback_date == today_key:
            return
        if state.last_feedback_date == previous_day(today).isoformat():
            state.streak_days += 1
        else:
            state.streak_days = 1
        state.longest_streak = max(state.longest_streak, state.streak_days)
        state.last_feedback_date = today_key

    @staticmethod
    def _calculate_points(state: EngagementState, event: FeedbackEvent, today: date) -> int:
        points = _BASE_POINTS[event.kind]
        if state.total_feedbacks == 0:
            points += FIRST_FEEDBACK_BONUS
        if event.accurate:
            points += ACCURACY_BONUS
        points += min(state.streak_days * STREAK_BONUS_PER_DAY, MAX_STREAK_BONUS)

        stats = state.daily_stats.get(today.isoformat())
        remaining = DAILY_CAP - (stats.points if stats else 0)
        return max(0, min(points, remaining))
