"""Analyze one snapshot file and print detected conflicts and events as JSON."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from event_relay.adapters.service_factory import build_conflict_options
from event_relay.adapters.snapshot_provider import parse_calendar_items, parse_messages
from event_relay.config.logging_config import get_logger
from event_relay.config.settings import get_settings
from event_relay.domain.exceptions import ValidationError
from event_relay.domain.models import ensure_utc, utc_now
from event_relay.services.conflict_detector import analyze_conflicts
from event_relay.services.event_detector import EventDetector

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Detect calendar conflicts and notable events in a snapshot"
    )
    parser.add_argument("snapshot", type=Path, help="Path to a snapshot JSON file")
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        default=None,
        help="Reference time (ISO 8601); defaults to the current time",
    )
    parser.add_argument(
        "--back-to-back-threshold",
        type=int,
        default=None,
        help="Max gap in minutes reported as back-to-back",
    )
    parser.add_argument(
        "--no-back-to-back",
        action="store_true",
        help="Disable back-to-back detection",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def load_snapshot(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        raise ValidationError(f"Unreadable snapshot {path}: {exc}") from exc
    if not isinstance(document, dict) or "user" not in document:
        raise ValidationError(f"Snapshot {path} must be an object with a 'user' key")
    return document


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    try:
        document = load_snapshot(args.snapshot)
    except ValidationError as exc:
        logger.error("snapshot_load_failed", path=str(args.snapshot), error=str(exc))
        return 1

    user = document["user"]
    user_id = str(user.get("user_id", ""))
    user_email = str(user.get("email", ""))
    now = ensure_utc(args.now) if args.now else utc_now()

    options = build_conflict_options(settings)
    updates: dict[str, Any] = {}
    if args.back_to_back_threshold is not None:
        updates["back_to_back_threshold"] = args.back_to_back_threshold
    if args.no_back_to_back:
        updates["enable_back_to_back_detection"] = False
    options = options.model_copy(update=updates)

    items = parse_calendar_items(document.get("calendar_items") or [])
    messages = parse_messages(user_id, document.get("messages") or [])
    known_ids = set(document.get("known_calendar_ids") or [])

    analysis = analyze_conflicts(user_id, user_email, items, options=options, now=now)
    detector = EventDetector()
    events = [
        *detector.detect_important_messages(messages, now=now),
        *detector.detect_calendar_events(user_id, items, known_ids, now=now),
    ]

    report = {
        "user_id": user_id,
        "analyzed_at": now.isoformat(),
        "has_conflicts": analysis.has_conflicts,
        "conflicts": [c.model_dump(mode="json") for c in analysis.conflicts],
        "events": [e.model_dump(mode="json") for e in events],
    }
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
