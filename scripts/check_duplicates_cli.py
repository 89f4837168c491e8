#!/usr/bin/env python3
"""CLI for checking a draft event against existing events.

Usage:
    python scripts/check_duplicates_cli.py draft.json
    python scripts/check_duplicates_cli.py draft.json --threshold 0.7
    python scripts/check_duplicates_cli.py draft.json --events-file export.json
    python scripts/check_duplicates_cli.py draft.json --json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog
from dotenv import load_dotenv
load_dotenv()  # Must run before any campus_events.* imports

from campus_events.dedup import (
    DetectorConfig,
    DuplicateCheckOptions,
    DuplicateDetectionService,
    recommend,
)
from campus_events.errors import DuplicateDetectionError
from campus_events.storage import InMemoryEventStore, PgEventStore

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)
logger = structlog.get_logger()


def print_verdicts(title: str, verdicts, service: DuplicateDetectionService):
    print("\n" + "-" * 60)
    print(f"{title} ({len(verdicts)}):")
    print("-" * 60)
    for v in verdicts:
        print(
            f"  [{v.confidence.value}] {v.probability:.1%}  "
            f"{v.event.title} ({v.event.event_id})"
        )
        print(f"     {service.explain(v)}")


async def check(
    draft: dict,
    threshold: float | None = None,
    exclude_event_id: str | None = None,
    events_file: str | None = None,
    as_json: bool = False,
) -> int:
    """Run a duplicate check and print the result."""
    if events_file:
        store = InMemoryEventStore.from_json_file(events_file)
    else:
        store = PgEventStore()
        await store.connect()

    try:
        service = DuplicateDetectionService(store=store, config=DetectorConfig.from_env())
        result = await service.check_for_duplicates(
            draft,
            DuplicateCheckOptions(threshold=threshold, exclude_event_id=exclude_event_id),
        )
    finally:
        if isinstance(store, PgEventStore):
            await store.close()

    recommendations = recommend(result)

    if as_json:
        print(json.dumps(
            {
                **result.to_dict(analyzer=service.analyzer),
                "recommendations": recommendations.to_dict(),
            },
            indent=2,
            default=str,
        ))
    else:
        print("\n" + "=" * 60)
        print(f"DUPLICATE CHECK: {draft.get('title')}")
        print("=" * 60)
        print(f"  Checked: {result.analysis.total_checked} events")
        print(f"  Threshold: {result.analysis.threshold}")
        print(f"  {recommendations.message}")
        if result.duplicates:
            print_verdicts("DUPLICATES", result.duplicates, service)
        if result.suggestions:
            print_verdicts("SUGGESTIONS", result.suggestions, service)

    return 2 if recommendations.should_block else 1 if result.is_duplicate else 0


def main():
    parser = argparse.ArgumentParser(description="Check a draft event for duplicates")
    parser.add_argument("draft", help="Path to a JSON file describing the draft event")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Duplicate threshold (default: DUPLICATE_SIMILARITY_THRESHOLD)",
    )
    parser.add_argument(
        "--exclude",
        default=None,
        help="Event ID to leave out of the comparison (when checking an update)",
    )
    parser.add_argument(
        "--events-file",
        default=None,
        help="Compare against events in a JSON export instead of the database",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw JSON result")

    args = parser.parse_args()

    with open(args.draft, encoding="utf-8") as f:
        draft = json.load(f)

    try:
        exit_code = asyncio.run(check(
            draft,
            threshold=args.threshold,
            exclude_event_id=args.exclude,
            events_file=args.events_file,
            as_json=args.json,
        ))
    except DuplicateDetectionError as e:
        logger.error("duplicate_check_failed", error=str(e))
        sys.exit(3)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
