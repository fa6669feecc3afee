#!/usr/bin/env python3
"""CLI entry point for a forced metrics refresh.

Usage:
    # Refresh the last 30 days for every configured source
    python scripts/run_refresh.py

    # Refresh an explicit range
    python scripts/run_refresh.py --start 2024-12-01 --end 2024-12-07

    # Last 7 days, email and ads only
    python scripts/run_refresh.py --days 7 --sources email,ads
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pulse_core.api.routes import DEFAULT_RANGE_DAYS
from pulse_core.metrics.schema import DateRange
from pulse_core.metrics.service import MetricsService
from pulse_core.sources.exceptions import SourceError


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_range(args: argparse.Namespace) -> DateRange:
    if args.start or args.end:
        end = (
            datetime.strptime(args.end, "%Y-%m-%d").date()
            if args.end
            else datetime.now().date()
        )
        start = (
            datetime.strptime(args.start, "%Y-%m-%d").date()
            if args.start
            else DateRange.last_days(DEFAULT_RANGE_DAYS, end).start
        )
        return DateRange(start, end)
    return DateRange.last_days(args.days)


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Pulse forced metrics refresh")
    parser.add_argument("--start", type=str, help="First day (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="Last day (YYYY-MM-DD)")
    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_RANGE_DAYS,
        help="Last N days up to today (ignored with --start/--end)",
    )
    parser.add_argument(
        "--sources",
        type=str,
        help="Comma-separated subset of sources (email,sales,ads)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        date_range = build_range(args)
    except ValueError as exc:
        parser.error(str(exc))

    sources = (
        [s.strip().lower() for s in args.sources.split(",") if s.strip()]
        if args.sources
        else None
    )

    service = MetricsService()
    try:
        pipeline = await service.start()
        report = await pipeline.force_refresh(
            date_range, sources, service.config.email_tags
        )
    except (SourceError, ValueError) as exc:
        logging.getLogger(__name__).error(
            "Refresh failed: %s", service.redact_error(str(exc))
        )
        return 1
    finally:
        await service.close()

    print(
        json.dumps(
            {
                "from": date_range.start.isoformat(),
                "to": date_range.end.isoformat(),
                "summary": report.summary.to_dict(),
                "daily": [row.to_dict() for row in report.daily],
                "errors": report.errors,
                "stale_sources": report.stale_sources,
            },
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
