"""Entry point: wires all components and runs a prediction or records feedback."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from datetime import datetime
from enum import Enum
from typing import Any

import config
from crowdsignal.accuracy import AccuracyTracker
from crowdsignal.engagement import EngagementLedger
from crowdsignal.festivals import (
    FestivalImpactResolver,
    FestivalSource,
    FileFestivalSource,
    HttpFestivalSource,
)
from crowdsignal.fusion import CrowdFusionEngine
from crowdsignal.models import DestinationSnapshot, FeedbackEvent, WeatherObservation
from crowdsignal.storage import JsonFileStore
from crowdsignal.weather import WeatherImpactResolver

logger = logging.getLogger(__name__)


def build_engine() -> CrowdFusionEngine:
    """Construct the fusion engine with festival data loaded.

    Returns:
        A ready :class:`~crowdsignal.fusion.CrowdFusionEngine`.  If the
        festival data cannot be fetched the engine runs without festivals.
    """
    source: FestivalSource
    if config.FESTIVAL_DATA_URL:
        source = HttpFestivalSource(config.FESTIVAL_DATA_URL, timeout=config.FETCH_TIMEOUT_SECONDS)
    else:
        source = FileFestivalSource(config.FESTIVAL_DATA_PATH)

    festivals = FestivalImpactResolver(
        source=source,
        cache_ttl_seconds=config.FESTIVAL_CACHE_TTL_SECONDS,
        fetch_timeout=config.FETCH_TIMEOUT_SECONDS,
    )
    asyncio.run(festivals.load())
    return CrowdFusionEngine(WeatherImpactResolver(), festivals)


def build_accuracy_tracker(store: JsonFileStore | None = None) -> AccuracyTracker:
    if store is None:
        store = JsonFileStore(config.ENGAGEMENT_STORE_PATH)
    return AccuracyTracker(store, storage_key=config.ACCURACY_STORAGE_KEY)


def build_ledger(user_id: str | None = None) -> EngagementLedger:
    store = JsonFileStore(config.ENGAGEMENT_STORE_PATH)
    tracker = build_accuracy_tracker(store)
    if user_id:
        return EngagementLedger.for_user(store, user_id, accuracy_tracker=tracker)
    return EngagementLedger(
        store, storage_key=config.ENGAGEMENT_STORAGE_KEY, accuracy_tracker=tracker
    )


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _to_jsonable(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _run_predict(args: argparse.Namespace) -> dict[str, Any]:
    engine = build_engine()
    base_level: Any = args.base_level
    try:
        base_level = float(base_level)
    except ValueError:
        pass
    snapshot = DestinationSnapshot(
        destination_id=args.destination_id,
        category=args.category,
        base_crowd_level=base_level,
        open_hour=args.open_hour,
        close_hour=args.close_hour,
        closed_weekday=args.closed_weekday,
        average_visitors=args.average_visitors,
    )
    weather = WeatherObservation(condition=args.weather) if args.weather else None
    moment = datetime.fromisoformat(args.at) if args.at else datetime.now().astimezone()
    result = engine.predict_at(snapshot, weather, moment)
    best = engine.best_time(snapshot, weather, moment)
    return {
        "prediction": _to_jsonable(result),
        "best_time": _to_jsonable(best),
    }


def _run_feedback(args: argparse.Namespace) -> dict[str, Any]:
    ledger = build_ledger(args.user)
    outcome = ledger.submit_feedback(FeedbackEvent(
        kind=args.kind,
        destination_id=args.destination_id,
        predicted_level=args.predicted,
        reported_level=args.reported,
        accurate=args.accurate,
        predicted_score=args.predicted_score,
    ))
    return {
        "award": _to_jsonable(outcome.award),
        "new_badges": [b.name for b in outcome.new_badges],
        "destination_accuracy": _to_jsonable(outcome.destination_accuracy),
        "today_points": ledger.today_points(),
        "accuracy_rate": ledger.accuracy_rate(),
    }


def _run_accuracy(args: argparse.Namespace) -> dict[str, Any]:
    tracker = build_accuracy_tracker()
    if args.destination_id is not None:
        return {"destination": _to_jsonable(tracker.destination_accuracy(args.destination_id))}
    return {
        "system": _to_jsonable(tracker.system_stats()),
        "insights": _to_jsonable(tracker.insights()),
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crowd-level prediction and feedback ledger.")
    sub = parser.add_subparsers(dest="command", required=True)

    predict = sub.add_parser("predict", help="Predict the crowd level at a destination.")
    predict.add_argument("destination_id", type=int)
    predict.add_argument("--category", default="default")
    predict.add_argument("--base-level", default="50", help="0-100 or low/moderate/heavy/overcrowded")
    predict.add_argument("--weather", default=None, help="Free-text weather condition")
    predict.add_argument("--open-hour", type=int, default=None)
    predict.add_argument("--close-hour", type=int, default=None)
    predict.add_argument("--closed-weekday", default=None, help="e.g. monday")
    predict.add_argument("--average-visitors", type=int, default=None)
    predict.add_argument("--at", default=None, help="ISO datetime; defaults to now")

    feedback = sub.add_parser("feedback", help="Record crowd feedback and award points.")
    feedback.add_argument("destination_id", type=int)
    feedback.add_argument("--kind", choices=["quick", "detailed"], default="quick")
    feedback.add_argument("--predicted", default=None)
    feedback.add_argument("--reported", default=None)
    feedback.add_argument("--predicted-score", type=float, default=None, help="0-1 score that was shown")
    feedback.add_argument("--accurate", action="store_true")
    feedback.add_argument("--user", default=None, help="Per-user ledger key")

    accuracy = sub.add_parser("accuracy", help="Show prediction accuracy statistics.")
    accuracy.add_argument("destination_id", nargs="?", default=None)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run the requested command and print JSON to stdout."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = parse_args(argv)
    try:
        if args.command == "predict":
            output = _run_predict(args)
        elif args.command == "accuracy":
            output = _run_accuracy(args)
        else:
            output = _run_feedback(args)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(2)
    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
