"""Command line interface for running pipesync operations."""

from __future__ import annotations

import argparse
import logging
import sys

from googleapiclient.errors import HttpError

from pipesync import __version__
from pipesync.errors import PipesyncError
from pipesync.logging_config import configure_logging
from pipesync.settings import SETTINGS_PATH, load_sync_settings
from pipesync.sync_service import SyncService


def _service(args: argparse.Namespace) -> SyncService:
    settings = load_sync_settings(args.settings)
    return SyncService.from_settings(settings, args.sheet, log_callback=print)


def command_pull(args: argparse.Namespace) -> int:
    try:
        _service(args).pull(limit=args.limit)
    except (PipesyncError, HttpError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def command_push(args: argparse.Namespace) -> int:
    try:
        report = _service(args).push()
    except (PipesyncError, HttpError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 1 if report.error_count else 0


def command_sync(args: argparse.Namespace) -> int:
    try:
        summary = _service(args).sync()
    except (PipesyncError, HttpError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    if summary.pushed is not None and summary.pushed.error_count:
        return 1
    return 0


def command_repair(args: argparse.Namespace) -> int:
    try:
        report = _service(args).repair()
    except (PipesyncError, HttpError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if report.status_column is None:
        print("No status column found.")
    elif not report.changed:
        print("Status column is healthy.")
    else:
        if report.duplicates_removed:
            print(f"Removed duplicate status columns: {len(report.duplicates_removed)}")
        if report.columns_cleaned:
            print(f"Cleaned leftover formatting in {len(report.columns_cleaned)} columns")
        if report.created:
            print("Recreated the status column.")
    return 0


def command_filters(args: argparse.Namespace) -> int:
    try:
        filters = _service(args).list_filters()
    except (PipesyncError, HttpError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if not filters:
        print("No saved filters.")
    for item in filters:
        print(f"{item['id']:>8}  {item['name']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pipedrive to Google Sheets synchronisation")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--settings", default=SETTINGS_PATH, help="Path to the settings JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Also log to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_command(name: str, help_text: str, func) -> argparse.ArgumentParser:
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--sheet", required=True, help="Worksheet title")
        command.set_defaults(func=func)
        return command

    pull_parser = add_command("pull", "Rebuild the sheet from the selected Pipedrive filter", command_pull)
    pull_parser.add_argument("--limit", type=int, default=0, help="Maximum number of records to fetch")
    add_command("push", "Send rows marked Modified to Pipedrive", command_push)
    add_command("sync", "Push modified rows, then pull", command_sync)
    add_command("repair", "Detect and repair status column drift", command_repair)
    add_command("filters", "List saved filters for the sheet's entity type", command_filters)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)
    return args.func(args)


__all__ = ["build_parser", "main"]
