"""Festival reference data: one-shot async loading and cached impact lookups."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable

import httpx

from crowdsignal.cache import TTLCache
from crowdsignal.models import Festival
from crowdsignal.timeutil import to_date

logger = logging.getLogger(__name__)

MAX_FESTIVAL_IMPACT = 2.5
NEUTRAL_IMPACT = 1.0
ACTIVE_CACHE_TTL_SECONDS = 60.0
FETCH_TIMEOUT_SECONDS = 5.0

DateLike = date | datetime | str


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class FestivalSource(ABC):
    """Somewhere a versioned festival document can be fetched from.

    The document shape is ``{"version": "...", "festivals": [record, ...]}``
    where each record is ``{id, name?, startDate, endDate, impact,
    destinations: [int, ...]}``.
    """

    @abstractmethod
    async def fetch(self) -> dict[str, Any]:
        """Return the raw festival document. May raise on failure."""


class StaticFestivalSource(FestivalSource):
    """Serves an in-memory document (inline data, tests)."""

    def __init__(self, document: dict[str, Any]) -> None:
        self._document = document

    async def fetch(self) -> dict[str, Any]:
        return self._document


class FileFestivalSource(FestivalSource):
    """Reads the festival document from a local JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def fetch(self) -> dict[str, Any]:
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        return json.loads(text)


class HttpFestivalSource(FestivalSource):
    """Fetches the festival document over HTTP.

    Args:
        url: Location of the JSON document.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        url: str,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def fetch(self) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(self._url)
            response.raise_for_status()
            return response.json()


def parse_festival(record: dict[str, Any]) -> Festival:
    """Build a :class:`~crowdsignal.models.Festival` from a raw record.

    Raises:
        KeyError: If ``id``, ``startDate`` or ``endDate`` is missing.
        ValueError: If a date or the impact cannot be parsed.
        TypeError: If *record* is not a mapping.
    """
    festival_id = str(record["id"])
    impact = record.get("impact")
    return Festival(
        festival_id=festival_id,
        name=str(record.get("name") or festival_id),
        start_date=to_date(record["startDate"]),
        end_date=to_date(record["endDate"]),
        # a missing or zero impact counts as neutral
        impact=float(impact) if impact else NEUTRAL_IMPACT,
        destinations=frozenset(int(d) for d in record.get("destinations") or ()),
    )


def parse_document(document: dict[str, Any]) -> list[Festival]:
    """Parse every well-formed record in *document*, skipping the rest with a warning."""
    festivals: list[Festival] = []
    for record in document.get("festivals") or []:
        try:
            festivals.append(parse_festival(record))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed festival record: %r", record)
    return festivals


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class FestivalImpactResolver:
    """Answers "which festivals are on, and how much do they move crowds?".

    Reference data is loaded once via :meth:`load`.  Until then (or when the
    load failed) every query returns the neutral answer: no active festivals
    and an impact of ``1.0``.  Lookups never raise.

    Active festivals per date are cached for *cache_ttl_seconds* and
    recomputed from the in-memory data on expiry.

    Args:
        source: Where to fetch the festival document from.  ``None`` means
            festivals can only be supplied through :meth:`load_festivals`.
        cache_ttl_seconds: Age after which an active-date entry is recomputed.
        fetch_timeout: Upper bound on :meth:`load`, in seconds.
        monotonic: Seconds source for the cache.
        today: Date used when a query omits the date.
    """

    def __init__(
        self,
        source: FestivalSource | None = None,
        cache_ttl_seconds: float = ACTIVE_CACHE_TTL_SECONDS,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._source = source
        self._fetch_timeout = fetch_timeout
        self._today = today
        self._lock = threading.RLock()
        self._festivals: tuple[Festival, ...] | None = None
        self._active_cache: TTLCache[list[Festival]] = TTLCache(cache_ttl_seconds, monotonic)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Fetch and install the festival data. Runs at most once.

        Failure, timeout and malformed documents leave the resolver with an
        empty collection.  If the awaiting task is cancelled the empty
        collection is installed before the cancellation propagates.

        Returns:
            Number of festivals loaded.
        """
        if self._festivals is not None:
            return len(self._festivals)
        if self._source is None:
            logger.warning("No festival source configured; continuing with no festivals.")
            self.load_festivals([])
            return 0

        try:
            document = await asyncio.wait_for(self._source.fetch(), timeout=self._fetch_timeout)
            festivals = parse_document(document)
        except asyncio.CancelledError:
            logger.warning("Festival load abandoned; continuing with no festivals.")
            self.load_festivals([])
            raise
        except Exception:
            logger.exception("Failed to load festival data; continuing with no festivals.")
            festivals = []

        self.load_festivals(festivals)
        logger.info("Festival data loaded: %d festivals.", len(festivals))
        return len(festivals)

    def load_festivals(self, festivals: Iterable[Festival]) -> None:
        """Install already-parsed festivals and drop any cached lookups."""
        with self._lock:
            self._festivals = tuple(festivals)
            self._active_cache.clear()

    @property
    def is_loaded(self) -> bool:
        return self._festivals is not None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_festivals(self, day: DateLike | None = None) -> list[Festival]:
        """Return festivals with ``start_date <= day <= end_date``.

        Args:
            day: Date to check; defaults to today.

        Returns:
            Active festivals in reference-data order; empty if not loaded.
        """
        with self._lock:
            festivals = self._festivals
        if not festivals:
            return []
        target = self._resolve_day(day)
        if target is None:
            return []
        key = target.isoformat()
        cached = self._active_cache.get_or_compute(
            key, lambda: [f for f in festivals if f.is_active_on(target)]
        )
        return list(cached)

    def festivals_for_destination(
        self, destination_id: int, day: DateLike | None = None
    ) -> list[Festival]:
        """Return active festivals whose destination set contains *destination_id*."""
        return [f for f in self.active_festivals(day) if destination_id in f.destinations]

    def destination_impact(self, destination_id: int, day: DateLike | None = None) -> float:
        """Return the strongest active festival impact for *destination_id*.

        Impacts do not add up: the maximum is taken, then capped at 2.5.

        Returns:
            Impact multiplier in ``[1.0-ish, 2.5]``; ``1.0`` when nothing applies.
        """
        festivals = self.festivals_for_destination(destination_id, day)
        if not festivals:
            return NEUTRAL_IMPACT
        return min(max(f.impact for f in festivals), MAX_FESTIVAL_IMPACT)

    def impact_details(self, destination_id: int, day: DateLike | None = None) -> dict[str, Any]:
        """Return ``{"impact", "festivals", "has_active_festival"}`` for display."""
        festivals = self.festivals_for_destination(destination_id, day)
        return {
            "impact": self.destination_impact(destination_id, day),
            "festivals": festivals,
            "has_active_festival": bool(festivals),
        }

    def is_date_during_festival(self, day: DateLike, festival_id: str) -> bool:
        with self._lock:
            festivals = self._festivals or ()
        target = self._resolve_day(day)
        if target is None:
            return False
        return any(f.festival_id == festival_id and f.is_active_on(target) for f in festivals)

    def upcoming(self, days: int = 30, today: DateLike | None = None) -> list[Festival]:
        """Return festivals that are ongoing or start within *days*, by start date."""
        with self._lock:
            festivals = self._festivals or ()
        start = self._resolve_day(today)
        if start is None:
            return []
        end = start + timedelta(days=days)
        window = [f for f in festivals if f.start_date <= end and f.end_date >= start]
        return sorted(window, key=lambda f: f.start_date)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve_day(self, day: DateLike | None) -> date | None:
        if day is None:
            return self._today()
        try:
            return to_date(day)
        except (TypeError, ValueError):
            logger.warning("Unparsable festival lookup date %r; treating as no festivals.", day)
            return None
