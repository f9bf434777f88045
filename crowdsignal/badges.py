"""Badge catalog and unlock evaluation."""

from __future__ import annotations

import logging

from crowdsignal.models import Badge, BadgeCriteria, CriteriaKind, EngagementState

logger = logging.getLogger(__name__)

_K = CriteriaKind

# Declaration order is the order badges unlock in when several qualify at once
BADGE_CATALOG: tuple[Badge, ...] = (
    Badge("first_report", "First Report", "Submit your first crowd feedback", "🔰",
          BadgeCriteria(_K.TOTAL_FEEDBACKS, 1)),
    Badge("crowd_reporter", "Crowd Reporter", "Submit 5 crowd reports", "📋",
          BadgeCriteria(_K.TOTAL_FEEDBACKS, 5)),
    Badge("weekend_warrior", "Weekend Warrior", "Report crowds on 3 different weekends", "📅",
          BadgeCriteria(_K.WEEKEND_FEEDBACKS, 3)),
    Badge("accuracy_ace", "Accuracy Ace", "Confirm 5 predictions as accurate", "🎯",
          BadgeCriteria(_K.ACCURACY_CONFIRMED, 5)),
    Badge("destination_expert", "Destination Expert", "Report from 10 different destinations", "🗺️",
          BadgeCriteria(_K.UNIQUE_DESTINATIONS, 10)),
    Badge("streak_master", "Streak Master", "Maintain a 7-day feedback streak", "🔥",
          BadgeCriteria(_K.STREAK_DAYS, 7)),
    Badge("crowd_expert", "Crowd Expert", "Submit 25 crowd reports", "⭐",
          BadgeCriteria(_K.TOTAL_FEEDBACKS, 25)),
    Badge("prediction_guru", "Prediction Guru", "100 feedbacks with 80%+ accuracy", "🏆",
          BadgeCriteria(_K.ACCURACY_RATE, 80, min_feedbacks=100)),
)


def criteria_met(criteria: BadgeCriteria, state: EngagementState) -> bool:
    """Return whether *state* satisfies *criteria*."""
    if criteria.kind is CriteriaKind.TOTAL_FEEDBACKS:
        return state.total_feedbacks >= criteria.threshold
    if criteria.kind is CriteriaKind.WEEKEND_FEEDBACKS:
        return state.weekend_feedbacks >= criteria.threshold
    if criteria.kind is CriteriaKind.ACCURACY_CONFIRMED:
        return state.accuracy_confirmed >= criteria.threshold
    if criteria.kind is CriteriaKind.UNIQUE_DESTINATIONS:
        return len(state.unique_destinations) >= criteria.threshold
    if criteria.kind is CriteriaKind.STREAK_DAYS:
        return state.streak_days >= criteria.threshold
    if criteria.kind is CriteriaKind.ACCURACY_RATE:
        if state.total_feedbacks == 0 or state.total_feedbacks < criteria.min_feedbacks:
            return False
        rate = state.accuracy_confirmed / state.total_feedbacks * 100
        return rate >= criteria.threshold
    return False


class BadgeEvaluator:
    """Checks badge criteria against an engagement state.

    Unlocking is monotone: a badge id, once in ``state.badges``, is never
    removed and never evaluated again.  Newly unlocked ids are also queued in
    ``state.badges_pending`` until :meth:`acknowledge_pending` is called.

    Args:
        catalog: Badges to evaluate, in unlock order. Defaults to the
            built-in eight-badge catalog.
    """

    def __init__(self, catalog: tuple[Badge, ...] = BADGE_CATALOG) -> None:
        self._catalog = catalog
        self._by_id = {badge.badge_id: badge for badge in catalog}

    def check_badges(self, state: EngagementState) -> list[Badge]:
        """Unlock every newly satisfied badge and return them in catalog order."""
        unlocked: list[Badge] = []
        for badge in self._catalog:
            if badge.badge_id in state.badges:
                continue
            if criteria_met(badge.criteria, state):
                state.badges.add(badge.badge_id)
                state.badges_pending.append(badge.badge_id)
                unlocked.append(badge)
        if unlocked:
            logger.info("Unlocked badges: %s", ", ".join(b.badge_id for b in unlocked))
        return unlocked

    def earned(self, state: EngagementState) -> list[Badge]:
        """Return earned badges in catalog order; unknown ids are ignored."""
        return [badge for badge in self._catalog if badge.badge_id in state.badges]

    def pending(self, state: EngagementState) -> list[Badge]:
        """Return unlocked badges not yet shown to the user, in unlock order."""
        return [self._by_id[bid] for bid in state.badges_pending if bid in self._by_id]

    @staticmethod
    def acknowledge_pending(state: EngagementState) -> None:
        state.badges_pending.clear()

    def get_badge(self, badge_id: str) -> Badge | None:
        return self._by_id.get(badge_id)

    def all_badges(self) -> list[Badge]:
        return list(self._catalog)
