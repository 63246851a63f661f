"""Command line helper for the Stockboard sheet synchronisation core."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from stockboard.errors import SheetDataError
from stockboard.logging_config import configure_logging
from stockboard.notifications import DATA_REFRESH_COMPLETE, RefreshComplete
from stockboard.sync_service import SheetSyncService


def _build_service(args: argparse.Namespace) -> SheetSyncService:
    return SheetSyncService.from_settings(args.settings)


def command_fetch(args: argparse.Namespace) -> int:
    try:
        service = _build_service(args)
        rows = service.get_sheet_data(args.sheet, use_cache=not args.no_cache)
    except SheetDataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(rows, indent=2, default=str))
    return 0


def command_refresh(args: argparse.Namespace) -> int:
    try:
        service = _build_service(args)
    except SheetDataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    results = service.refresh_all()
    for sheet_id, rows in results.items():
        print(f"{sheet_id:<20} {len(rows):>6} rows")
    return 0


def command_summary(args: argparse.Namespace) -> int:
    try:
        service = _build_service(args)
        if args.days:
            service.settings.recent_days = args.days
        aggregate = service.get_dashboard_aggregate()
    except SheetDataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    payload = aggregate.to_dict()
    if not args.full:
        payload.pop("raw", None)
        payload["recent"] = {key: len(rows) for key, rows in payload["recent"].items()}
    print(json.dumps(payload, indent=2, default=str))
    return 0


def command_watch(args: argparse.Namespace) -> int:
    try:
        service = _build_service(args)
    except SheetDataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    def _report(payload: RefreshComplete) -> None:
        counts = ", ".join(f"{sheet_id}={len(rows)}" for sheet_id, rows in payload.results.items())
        print(f"Refresh complete: {counts}", flush=True)

    service.bus.subscribe(DATA_REFRESH_COMPLETE, _report)
    interval = args.interval or service.settings.refresh_interval_seconds
    if not service.start_auto_refresh(interval):
        print("Error: auto-refresh interval must be positive", file=sys.stderr)
        return 1
    try:
        while args.ticks <= 0 or service.auto_refresh.tick_count < args.ticks:
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop_auto_refresh()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stockboard spreadsheet sync tool")
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Print the rows of one sheet as JSON")
    fetch_parser.add_argument("sheet", help="Sheet (tab) name")
    fetch_parser.add_argument("--no-cache", action="store_true", help="Always fetch from the source")
    fetch_parser.set_defaults(func=command_fetch)

    refresh_parser = subparsers.add_parser("refresh", help="Refresh every known sheet")
    refresh_parser.set_defaults(func=command_refresh)

    summary_parser = subparsers.add_parser("summary", help="Print the dashboard aggregate")
    summary_parser.add_argument("--days", type=int, default=0, help="Recent window in days")
    summary_parser.add_argument("--full", action="store_true", help="Include recent and raw rows")
    summary_parser.set_defaults(func=command_summary)

    watch_parser = subparsers.add_parser("watch", help="Refresh all sheets on a schedule")
    watch_parser.add_argument("--interval", type=float, default=0.0, help="Seconds between refreshes")
    watch_parser.add_argument("--ticks", type=int, default=0, help="Stop after this many refreshes")
    watch_parser.set_defaults(func=command_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
