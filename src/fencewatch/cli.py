"""Command line entry point.

``fencewatch run`` starts the long-running service. ``fencewatch scan`` and
``fencewatch purge`` execute a single job run and print its summary as JSON,
which is handy for cron-driven deployments and manual backfills.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from datetime import timedelta

from fencewatch.config import FenceWatchConfig
from fencewatch.exceptions import FenceWatchConfigError, FenceWatchError
from fencewatch.jobs.purge import PurgeSweeper
from fencewatch.jobs.scanner import NotificationScanner
from fencewatch.resources import Resources
from fencewatch.service import FenceWatchService

_logger = logging.getLogger("fencewatch")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fencewatch",
        description="Geofence violation pipeline.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Consume GPS fixes and run the scheduled jobs until interrupted.")
    scan = sub.add_parser("scan", help="Notify owners of unsent violations once.")
    scan.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Maximum violations to handle (default: FENCEWATCH_SCAN_PAGE_SIZE).",
    )
    purge = sub.add_parser("purge", help="Delete notified violations once.")
    purge.add_argument(
        "--retention",
        type=float,
        default=None,
        help="Keep sent violations younger than this many seconds (default: FENCEWATCH_PURGE_RETENTION).",
    )
    return parser.parse_args(argv)


async def _scan(config: FenceWatchConfig, page_size: int | None) -> dict[str, int]:
    async with Resources(config) as resources:
        scanner = NotificationScanner(
            await resources.store(),
            await resources.notifier(),
            page_size=page_size if page_size is not None else config.scan_page_size,
            claim_lease=timedelta(seconds=config.claim_lease),
            operation_timeout=config.operation_timeout,
        )
        report = await scanner.run()
        return report.summary()


async def _purge(config: FenceWatchConfig, retention: float | None) -> dict[str, int]:
    seconds = retention if retention is not None else config.purge_retention
    async with Resources(config) as resources:
        sweeper = PurgeSweeper(
            await resources.store(),
            retention=timedelta(seconds=seconds),
            operation_timeout=config.operation_timeout,
        )
        report = await sweeper.run()
        return report.summary()


async def _run(config: FenceWatchConfig) -> None:
    async with Resources(config) as resources:
        await FenceWatchService(config, resources).run_forever()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = FenceWatchConfig.from_env()
        if args.command == "run":
            asyncio.run(_run(config))
            return 0
        if args.command == "scan":
            summary = asyncio.run(_scan(config, args.page_size))
        else:
            summary = asyncio.run(_purge(config, args.retention))
    except FenceWatchConfigError as exc:
        _logger.error("Configuration error: %s", exc)
        return 2
    except FenceWatchError as exc:
        _logger.error("%s failed: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:
        return 130

    print(json.dumps(summary, sort_keys=True), file=sys.stdout)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
