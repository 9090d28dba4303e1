"""
Entry point for the release tracker.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, time, timezone
from typing import List, Optional

from .application.exceptions import ReleaseTrackerError
from .infrastructure.containers import Container

logger = logging.getLogger(__name__)


def setup_logging(level: str):
    """Applies basic logging configuration."""
    logging.basicConfig(level=level)


def _exit_code(failed: List[str], total: int) -> int:
    """Non-zero only when every requested market failed."""
    if failed:
        logger.error(f"Failed markets: {', '.join(failed)}")
    return 1 if total and len(failed) == total else 0


async def _backfill(service, markets: List[str], args: argparse.Namespace) -> int:
    failed = []
    end_date = args.end_date or args.start_date
    for market_id in markets:
        try:
            await service.backfill(
                market_id, args.start_date, end_date, args.save_as_current
            )
        except ReleaseTrackerError as e:
            logger.error(f"Backfill for {market_id} failed: {e}")
            failed.append(market_id)
    return _exit_code(failed, len(markets))


async def run_application(
    args: argparse.Namespace, container: Optional[Container] = None
) -> int:
    """Wires and runs the application using the DI container."""

    container = container or Container()
    setup_logging(level=container.config().logging.level)

    try:
        service = container.release_service()
        markets = args.markets or list(service.markets)

        if args.clear_cache:
            await container.cache_store().clear_all()

        if args.rebuild_index:
            for market_id in markets:
                await container.window_store().rebuild_archive_index(market_id)

        if args.start_date:
            return await _backfill(service, markets, args)

        now = None
        if args.date:
            now = datetime.combine(args.date, time.min, tzinfo=timezone.utc)

        results = await service.refresh_markets(markets, now)
        failed = [
            market_id for market_id, result in results.items()
            if isinstance(result, Exception)
        ]
        return _exit_code(failed, len(results))
    except ReleaseTrackerError as e:
        logger.error(f"An application error occurred: {e}")
        return 1
    finally:
        await container.http_client().aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Weekly Release Tracker")

    parser.add_argument(
        "--markets",
        nargs="+",
        help="Markets to update, e.g. us india. Defaults to every configured market.",
    )

    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Evaluate the window as of this date (YYYY-MM-DD) instead of today.",
    )

    parser.add_argument(
        "--start-date",
        type=date.fromisoformat,
        help="Backfill the archive from this date (YYYY-MM-DD).",
    )

    parser.add_argument(
        "--end-date",
        type=date.fromisoformat,
        help="Last day of the backfill range; defaults to --start-date.",
    )

    parser.add_argument(
        "--save-as-current",
        action="store_true",
        help="During a backfill, also replace the current slot when it matches.",
    )

    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Delete every cached provider response before running.",
    )

    parser.add_argument(
        "--rebuild-index",
        action="store_true",
        help="Regenerate the archive indexes from the archived files.",
    )

    return parser


def main():
    parser = build_parser()
    cli_args = parser.parse_args()

    if cli_args.end_date and not cli_args.start_date:
        parser.error("--end-date requires --start-date")
    if cli_args.end_date and cli_args.end_date < cli_args.start_date:
        parser.error("--end-date must not be before --start-date")

    sys.exit(asyncio.run(run_application(cli_args)))


if __name__ == "__main__":
    main()
