"""Shared pytest fixtures for the crowdsignal tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from crowdsignal.festivals import FestivalImpactResolver
from crowdsignal.models import DestinationSnapshot, Festival
from crowdsignal.storage import InMemoryStore


# 2026-06-10 is a Wednesday
TS = datetime(2026, 6, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it to read, ``advance`` to move forward."""

    def __init__(self, now: datetime = TS) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic seconds source for cache expiry tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


# ---------------------------------------------------------------------------
# Clock fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


# ---------------------------------------------------------------------------
# Destination fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def beach_snapshot() -> DestinationSnapshot:
    return DestinationSnapshot(destination_id=14, category="beach", base_crowd_level=60)


@pytest.fixture
def monument_snapshot() -> DestinationSnapshot:
    """A monument with published hours and a Monday closure."""
    return DestinationSnapshot(
        destination_id=42,
        category="monument",
        base_crowd_level=50,
        open_hour=9,
        close_hour=17,
        closed_weekday=0,
    )


# ---------------------------------------------------------------------------
# Festival fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_festivals() -> list[Festival]:
    return [
        Festival("fest_a", "Harvest Fair", date(2026, 6, 8), date(2026, 6, 12), 1.4, frozenset({42, 7})),
        Festival("fest_b", "Camel Fair", date(2026, 6, 10), date(2026, 6, 10), 2.8, frozenset({42})),
        Festival("fest_c", "Lantern Week", date(2026, 7, 1), date(2026, 7, 7), 1.6, frozenset({14})),
    ]


@pytest.fixture
def festival_document() -> dict:
    """Raw document in the on-disk/over-the-wire shape."""
    return {
        "version": "1.0",
        "festivals": [
            {"id": "fest_a", "name": "Harvest Fair", "startDate": "2026-06-08",
             "endDate": "2026-06-12", "impact": 1.4, "destinations": [42, 7]},
            {"id": "fest_b", "name": "Camel Fair", "startDate": "2026-06-10",
             "endDate": "2026-06-10", "impact": 2.8, "destinations": [42]},
        ],
    }


@pytest.fixture
def loaded_festivals(sample_festivals, monotonic) -> FestivalImpactResolver:
    resolver = FestivalImpactResolver(monotonic=monotonic, today=lambda: TS.date())
    resolver.load_festivals(sample_festivals)
    return resolver


@pytest.fixture
def empty_festivals() -> FestivalImpactResolver:
    resolver = FestivalImpactResolver()
    resolver.load_festivals([])
    return resolver


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
