"""Weather impact resolver: maps a condition string and a destination category to a crowd multiplier."""

from __future__ import annotations

import logging

from crowdsignal.models import WeatherCategory

logger = logging.getLogger(__name__)

# Keyword lists, tested in WeatherCategory declaration order
CONDITION_KEYWORDS: dict[WeatherCategory, tuple[str, ...]] = {
    WeatherCategory.CLEAR: ("clear", "sunny"),
    WeatherCategory.CLOUDY: ("clouds", "cloudy", "overcast"),
    WeatherCategory.RAIN: ("rain", "drizzle", "shower"),
    WeatherCategory.HEAVY_RAIN: ("thunderstorm", "heavy rain", "storm"),
    WeatherCategory.SNOW: ("snow", "sleet"),
    WeatherCategory.EXTREME: ("extreme", "tornado", "hurricane"),
}

_KEYWORD_INDEX: dict[str, WeatherCategory] = {
    keyword: category
    for category, keywords in CONDITION_KEYWORDS.items()
    for keyword in keywords
}

_W = WeatherCategory

# multiplier < 1.0 = fewer visitors expected, > 1.0 = more
CATEGORY_WEATHER_IMPACT: dict[str, dict[WeatherCategory, float]] = {
    "beach": {
        _W.CLEAR: 1.3, _W.CLOUDY: 0.9, _W.RAIN: 0.4,
        _W.HEAVY_RAIN: 0.2, _W.SNOW: 0.1, _W.EXTREME: 0.1,
    },
    "hill-station": {
        _W.CLEAR: 1.2, _W.CLOUDY: 1.0, _W.RAIN: 0.6,
        _W.HEAVY_RAIN: 0.3, _W.SNOW: 1.4, _W.EXTREME: 0.2,
    },
    "religious": {
        _W.CLEAR: 1.0, _W.CLOUDY: 1.0, _W.RAIN: 0.8,
        _W.HEAVY_RAIN: 0.5, _W.SNOW: 0.6, _W.EXTREME: 0.3,
    },
    "wildlife": {
        _W.CLEAR: 1.1, _W.CLOUDY: 1.0, _W.RAIN: 0.5,
        _W.HEAVY_RAIN: 0.2, _W.SNOW: 0.3, _W.EXTREME: 0.1,
    },
    "heritage": {
        _W.CLEAR: 1.1, _W.CLOUDY: 1.0, _W.RAIN: 0.7,
        _W.HEAVY_RAIN: 0.4, _W.SNOW: 0.5, _W.EXTREME: 0.2,
    },
    "nature": {
        _W.CLEAR: 1.2, _W.CLOUDY: 0.9, _W.RAIN: 0.5,
        _W.HEAVY_RAIN: 0.3, _W.SNOW: 0.8, _W.EXTREME: 0.1,
    },
    "monument": {
        _W.CLEAR: 1.1, _W.CLOUDY: 1.0, _W.RAIN: 0.7,
        _W.HEAVY_RAIN: 0.4, _W.SNOW: 0.5, _W.EXTREME: 0.2,
    },
    "cultural": {
        _W.CLEAR: 1.0, _W.CLOUDY: 1.0, _W.RAIN: 0.8,
        _W.HEAVY_RAIN: 0.5, _W.SNOW: 0.6, _W.EXTREME: 0.3,
    },
    "adventure": {
        _W.CLEAR: 1.2, _W.CLOUDY: 0.9, _W.RAIN: 0.3,
        _W.HEAVY_RAIN: 0.1, _W.SNOW: 0.7, _W.EXTREME: 0.0,
    },
    "urban": {
        _W.CLEAR: 1.0, _W.CLOUDY: 1.0, _W.RAIN: 0.8,
        _W.HEAVY_RAIN: 0.6, _W.SNOW: 0.7, _W.EXTREME: 0.4,
    },
}

DEFAULT_MULTIPLIERS: dict[WeatherCategory, float] = {
    _W.CLEAR: 1.0,
    _W.CLOUDY: 1.0,
    _W.RAIN: 0.7,
    _W.HEAVY_RAIN: 0.4,
    _W.SNOW: 0.5,
    _W.EXTREME: 0.2,
}

# Used when the caller has no category at all
_FALLBACK_CATEGORY = "urban"


class WeatherImpactResolver:
    """Resolves weather crowd multipliers per destination category.

    The tables default to the built-in ones; pass *tables* / *default_table*
    to substitute reference data (tests, regional variants).  Lookups never
    raise: malformed conditions classify as CLEAR, unknown categories use the
    default table, and an unresolvable pair yields a neutral ``1.0``.

    Args:
        tables: Mapping of category name to its weather multiplier table.
        default_table: Table used for categories without a specific entry.
    """

    def __init__(
        self,
        tables: dict[str, dict[WeatherCategory, float]] | None = None,
        default_table: dict[WeatherCategory, float] | None = None,
    ) -> None:
        self._tables = CATEGORY_WEATHER_IMPACT if tables is None else tables
        self._default = DEFAULT_MULTIPLIERS if default_table is None else default_table

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @staticmethod
    def classify(condition: object) -> WeatherCategory:
        """Map free-text *condition* to a :class:`~crowdsignal.models.WeatherCategory`.

        A condition that is exactly one of the keywords maps to that keyword's
        category.  Otherwise categories are tested in declaration order and
        the first one with a keyword contained in the lower-cased text wins,
        so ``"light rain, thunderstorm later"`` classifies as RAIN.
        Non-string, empty and unmatched input is CLEAR.
        """
        if not isinstance(condition, str) or not condition.strip():
            return WeatherCategory.CLEAR
        text = condition.lower().strip()
        exact = _KEYWORD_INDEX.get(text)
        if exact is not None:
            return exact
        for category in WeatherCategory:
            if any(keyword in text for keyword in CONDITION_KEYWORDS[category]):
                return category
        return WeatherCategory.CLEAR

    def resolve_multiplier(self, category: str | None, condition: object) -> float:
        """Return the crowd multiplier for a destination *category* under *condition*.

        Args:
            category: Destination category tag (case and whitespace ignored).
            condition: Raw weather description, e.g. ``"Heavy rain showers"``.

        Returns:
            The table multiplier; ``1.0`` if neither table covers the pair.
        """
        weather = self.classify(condition)
        table = self.category_multipliers(category)
        if weather in table:
            return float(table[weather])
        if weather in self._default:
            return float(self._default[weather])
        logger.debug("No weather multiplier for %r/%s; using 1.0", category, weather.value)
        return 1.0

    def category_multipliers(self, category: str | None) -> dict[WeatherCategory, float]:
        """Return the multiplier table used for *category*."""
        key = _normalize_category(category)
        return self._tables.get(key, self._default)

    def supported_categories(self) -> list[str]:
        return list(self._tables)


def _normalize_category(category: str | None) -> str:
    if not isinstance(category, str) or not category.strip():
        return _FALLBACK_CATEGORY
    return category.strip().lower()
