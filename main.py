"""
Command-line entry point for the scheduling core.

Loads a calendar snapshot (JSON) into an in-memory store and runs one
scheduling query against it. Output is JSON on stdout.

Usage:
    python main.py --data sample_data/demo_org.json availability \
        --org org_demo --worker w_ana --date 2026-03-02 --duration 60
    python main.py --data sample_data/demo_org.json conflicts \
        --org org_demo --workers w_ana w_ben \
        --start 2026-03-02T17:00:00Z --end 2026-03-02T18:00:00Z
    python main.py --data sample_data/demo_org.json next-open \
        --org org_demo --worker w_ana --date 2026-03-02 --duration 60
    python main.py --data sample_data/demo_org.json round-robin-test \
        --org org_demo --date 2026-03-02 --iterations 6
"""

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

from crewcal.calendar.dates import parse_utc_datetime, zoned_datetime_label
from crewcal.calendar.working_hours import describe_week
from crewcal.errors import SchedulingError, SlotNotFoundError
from crewcal.logging_context import set_request_id
from crewcal.schemas.scheduling_schema import FallbackStrategy
from crewcal.scheduling import AvailabilityEngine, ConflictDetector, NextOpenSlotResolver
from crewcal.scheduling.blocking import get_org_calendar_settings, require_worker, resolve_worker_timezone
from crewcal.tools.calendar_store import InMemoryCalendarStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_SLOT = 2


def _instant(value: str):
    parsed = parse_utc_datetime(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"expected an ISO instant with Z or offset, got {value!r}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Query worker availability, conflicts, and round-robin assignment."
    )
    parser.add_argument(
        "--data",
        type=str,
        required=True,
        help="Path to a calendar snapshot JSON file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    availability = sub.add_parser("availability", help="Open slots for one worker on one day.")
    availability.add_argument("--org", required=True)
    availability.add_argument("--worker", required=True)
    availability.add_argument("--date", required=True, help="Local day, YYYY-MM-DD.")
    availability.add_argument("--duration", type=int, default=30, help="Minutes (default: 30).")
    availability.add_argument("--step", type=int, default=None, help="Slot granularity override.")
    availability.add_argument("--limit", type=int, default=None)
    availability.add_argument(
        "--ignore-events",
        action="store_true",
        help="Do not let existing events block slots.",
    )

    conflicts = sub.add_parser("conflicts", help="Existing items overlapping a proposed booking.")
    conflicts.add_argument("--org", required=True)
    conflicts.add_argument("--workers", nargs="+", required=True)
    conflicts.add_argument("--start", type=_instant, required=True)
    conflicts.add_argument("--end", type=_instant, required=True)
    conflicts.add_argument("--holds-only", action="store_true")
    conflicts.add_argument(
        "--force",
        action="store_true",
        help="Check even when the org allows overlaps.",
    )

    next_open = sub.add_parser("next-open", help="Earliest open slot with fallback.")
    next_open.add_argument("--org", required=True)
    next_open.add_argument("--worker", required=True, help="Preferred worker.")
    next_open.add_argument("--date", required=True)
    next_open.add_argument("--duration", type=int, default=30)
    next_open.add_argument("--lookahead", type=int, default=None, help="Days to search.")
    next_open.add_argument(
        "--fallback",
        choices=[strategy.value for strategy in FallbackStrategy],
        default=FallbackStrategy.ROUND_ROBIN.value,
    )
    next_open.add_argument("--candidates", nargs="*", default=None)

    preview = sub.add_parser("round-robin-test", help="Dry-run the round-robin rotation.")
    preview.add_argument("--org", required=True)
    preview.add_argument("--date", required=True)
    preview.add_argument("--iterations", type=int, default=6)
    preview.add_argument("--duration", type=int, default=None)
    preview.add_argument("--lookahead", type=int, default=None)
    preview.add_argument("--workers", nargs="*", default=None)

    return parser


def _run(args: argparse.Namespace, store: InMemoryCalendarStore) -> dict:
    if args.command == "availability":
        result = AvailabilityEngine(store).compute_availability_for_worker(
            args.org,
            args.worker,
            args.date,
            args.duration,
            step_minutes=args.step,
            ignore_event_conflicts=args.ignore_events,
            limit=args.limit,
        )
        worker = require_worker(store, args.org, args.worker)
        payload = result.model_dump(mode="json")
        payload["local_times"] = result.local_times()
        payload["weekly_hours"] = {
            str(day): spans
            for day, spans in describe_week(store.list_working_hours(args.org, worker.id)).items()
        }
        return payload

    if args.command == "conflicts":
        found = ConflictDetector(store).detect_worker_conflicts(
            args.org,
            args.workers,
            args.start,
            args.end,
            include_events=not args.holds_only,
            force=args.force,
        )
        return {
            "has_conflicts": bool(found),
            "conflicts": [item.model_dump(mode="json") for item in found],
        }

    if args.command == "next-open":
        found = NextOpenSlotResolver(store).resolve(
            args.org,
            args.date,
            args.duration,
            args.lookahead,
            args.worker,
            args.fallback,
            args.candidates,
        )
        worker = require_worker(store, args.org, found.worker_id)
        time_zone = resolve_worker_timezone(worker, get_org_calendar_settings(store, args.org))
        payload = found.model_dump(mode="json")
        payload["label"] = zoned_datetime_label(found.slot_utc, time_zone)
        return payload

    report = NextOpenSlotResolver(store).preview_round_robin(
        args.org,
        args.date,
        iterations=args.iterations,
        duration_minutes=args.duration,
        lookahead_days=args.lookahead,
        worker_ids=args.workers,
    )
    payload = report.model_dump(mode="json")
    payload["summary"] = report.summary
    return payload


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    data_path = Path(args.data)
    if not data_path.exists():
        logger.error("Snapshot file not found: %s", data_path)
        return EXIT_ERROR

    set_request_id(f"CLI-{uuid.uuid4().hex[:8]}")
    store = InMemoryCalendarStore.load_snapshot(data_path)

    try:
        payload = _run(args, store)
    except SlotNotFoundError as exc:
        sys.stdout.write(json.dumps({"error": "slot_not_found", "message": str(exc)}) + "\n")
        return EXIT_NO_SLOT
    except SchedulingError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.stdout.write(json.dumps({"error": type(exc).__name__, "message": str(exc)}) + "\n")
        return EXIT_ERROR

    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
