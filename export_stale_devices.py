#!/usr/bin/env python3
"""Command line entry point for exporting stale Entra ID devices to CSV."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable

from creds import get_default_stale_days
from device_lifecycle.models import STALE_EXPORT_COLUMNS, format_timestamp
from device_lifecycle.staleness import StaleScanReport, scan_stale_devices
from device_lifecycle.tabular import check_output_path, write_rows
from directory.client import connect
from exceptions import AuthError, DirectoryRequestError, OutputFileError
from monitoring import log_system_error, log_system_info, setup_logging


def _format_report(report: StaleScanReport, output: Path) -> str:
    lines = [report.summary(), f"Export file: {output}"]
    for device in report.stale:
        last_seen = format_timestamp(device.last_sign_in) or "never"
        lines.append(f"- {device.id} ({device.display_name or '-'}) last sign-in: {last_seen}")
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export stale directory devices to CSV")
    parser.add_argument("--output", "-o", required=True, type=Path, help="CSV file to write.")
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Devices whose last sign-in is this many days old or older are stale (default: STALE_DAYS or 180).",
    )
    parser.add_argument(
        "--include-no-timestamp",
        action="store_true",
        help="Also report devices that have never recorded a sign-in.",
    )
    parser.add_argument(
        "--exclude-autopilot",
        action="store_true",
        help="Never report devices registered through Windows Autopilot.",
    )
    parser.add_argument("--log-level", default="INFO", help="Console log level.")
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    stale_days = args.days if args.days is not None else get_default_stale_days()
    if stale_days < 0:
        parser.error("--days must not be negative")

    setup_logging(args.log_level)

    try:
        check_output_path(args.output)
    except OutputFileError as exc:
        log_system_error("Stale device export aborted", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    task = "export_exclude_autopilot" if args.exclude_autopilot else "export"
    try:
        client = connect(task)
        report = scan_stale_devices(
            client,
            stale_days,
            include_no_timestamp=args.include_no_timestamp,
            exclude_provisioned=args.exclude_autopilot,
        )
    except (EnvironmentError, AuthError, DirectoryRequestError) as exc:
        log_system_error("Stale device export failed", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        write_rows(args.output, STALE_EXPORT_COLUMNS, (device.as_row() for device in report.stale))
    except OutputFileError as exc:
        log_system_error("Stale device export could not be saved", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    summary = report.summary()
    logging.info(summary)
    log_system_info(
        summary,
        metadata={
            "output": str(args.output),
            "stale_days": stale_days,
            "include_no_timestamp": args.include_no_timestamp,
            "exclude_autopilot": args.exclude_autopilot,
        },
    )
    print(_format_report(report, args.output))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
