#!/usr/bin/env python3
"""Command line entry point for disabling and deleting devices listed in a stale export."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from creds import get_default_delay
from device_lifecycle.mutator import RemovalReport, run_removal
from device_lifecycle.tabular import read_rows
from directory.client import GraphDirectoryClient, connect
from exceptions import AuthError, InputFileError
from monitoring import log_system_error, log_system_info, setup_logging, trigger_admin_alert

CONFIRMATION_WORD = "DELETE"


def _format_report(report: RemovalReport) -> str:
    return "\n".join([*report.report_lines(), report.summary()])


def _confirm(count: int) -> bool:
    try:
        answer = input(
            f"About to permanently delete {count} device(s) from the directory. "
            f"Type {CONFIRMATION_WORD} to continue: "
        )
    except EOFError:
        return False
    return answer.strip() == CONFIRMATION_WORD


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete the devices listed in a stale-device export")
    parser.add_argument("--input", "-i", required=True, type=Path, help="CSV export with an Id column.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would happen without calling the directory.",
    )
    parser.add_argument(
        "--disable-first",
        action="store_true",
        help="Disable each device before deleting it.",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to pause between devices (default: THROTTLE_DELAY_SECONDS or 0).",
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt.")
    parser.add_argument("--log-level", default="INFO", help="Console log level.")
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    delay = args.delay if args.delay is not None else get_default_delay()
    if delay < 0:
        parser.error("--delay must not be negative")

    setup_logging(args.log_level)

    try:
        rows = read_rows(args.input, required_columns=("Id",))
    except InputFileError as exc:
        log_system_error("Stale device removal aborted", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if not args.dry_run and not args.yes and rows and not _confirm(len(rows)):
        print("Aborted; no devices were changed.")
        return 1

    client: Optional[GraphDirectoryClient] = None
    if not args.dry_run:
        try:
            client = connect("remove")
        except (EnvironmentError, AuthError) as exc:
            log_system_error("Unable to connect to Microsoft Graph", exc)
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    report = run_removal(
        client,
        rows,
        dry_run=args.dry_run,
        disable_first=args.disable_first,
        delay_seconds=delay,
    )

    summary = report.summary()
    logging.info(summary)
    log_system_info(summary, metadata={"input": str(args.input), "delay_seconds": delay})
    print(_format_report(report))

    if report.has_failures:
        trigger_admin_alert(
            f"Stale device removal finished with {report.delete_failed_count} delete failure(s) "
            f"and {report.disable_failed_count} disable failure(s)."
        )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
