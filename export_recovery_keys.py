#!/usr/bin/env python3
"""Command line entry point for exporting BitLocker recovery keys per device."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List

from creds import get_default_delay
from device_lifecycle.models import RECOVERY_KEY_COLUMNS, DeviceRecord
from device_lifecycle.recovery_keys import ExtractionReport, extract_recovery_keys
from device_lifecycle.staleness import fetch_inventory
from device_lifecycle.tabular import check_output_path, read_rows, write_rows
from directory.client import connect
from exceptions import AuthError, DirectoryRequestError, InputFileError, OutputFileError
from monitoring import log_system_error, log_system_info, setup_logging, trigger_admin_alert
from security.encryption import EXPORT_KEY_ENV, export_key_configured


def _format_report(report: ExtractionReport, output: Path) -> str:
    lines = [report.summary(), f"Export file: {output}"]
    if report.failures:
        lines.append("Failures:")
        lines.extend(
            f"  * {failure.entra_object_id} device={failure.device_id or '-'} "
            f"key={failure.key_id or '-'} ({failure.stage}): {failure.error}"
            for failure in report.failures
        )
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export BitLocker recovery keys to CSV")
    parser.add_argument("--output", "-o", required=True, type=Path, help="CSV file to write.")
    parser.add_argument(
        "--input",
        "-i",
        type=Path,
        default=None,
        help="Device export with Id, DeviceId and DisplayName columns; all directory devices when omitted.",
    )
    parser.add_argument(
        "--skip-missing-device-id",
        action="store_true",
        help="Leave devices without a DeviceId out of the export instead of writing a placeholder row.",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to pause after each key lookup (default: THROTTLE_DELAY_SECONDS or 0).",
    )
    parser.add_argument(
        "--encrypt",
        action="store_true",
        help="Encrypt the export with EXPORT_ENCRYPTION_KEY.",
    )
    parser.add_argument("--log-level", default="INFO", help="Console log level.")
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    delay = args.delay if args.delay is not None else get_default_delay()
    if delay < 0:
        parser.error("--delay must not be negative")

    setup_logging(args.log_level)

    if args.encrypt and not export_key_configured():
        message = f"--encrypt requires {EXPORT_KEY_ENV} to be configured"
        log_system_error(message)
        print(f"Error: {message}", file=sys.stderr)
        return 1

    try:
        check_output_path(args.output)
    except OutputFileError as exc:
        log_system_error("Recovery key export aborted", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    devices: List[DeviceRecord] = []
    if args.input is not None:
        try:
            rows = read_rows(args.input, required_columns=("Id", "DeviceId"))
        except InputFileError as exc:
            log_system_error("Recovery key export aborted", exc)
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        devices = [DeviceRecord.from_row(row) for row in rows]

    try:
        client = connect("recovery_keys")
        if args.input is None:
            devices = fetch_inventory(client)
    except (EnvironmentError, AuthError, DirectoryRequestError) as exc:
        log_system_error("Recovery key export failed", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    report = extract_recovery_keys(
        client,
        devices,
        skip_missing_device_id=args.skip_missing_device_id,
        delay_seconds=delay,
    )
    try:
        write_rows(
            args.output,
            RECOVERY_KEY_COLUMNS,
            (row.as_row() for row in report.rows),
            encrypted=args.encrypt,
        )
    except OutputFileError as exc:
        log_system_error("Recovery key export could not be saved", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    summary = report.summary()
    logging.info(summary)
    log_system_info(summary, metadata={"output": str(args.output), "encrypted": args.encrypt})
    print(_format_report(report, args.output))

    if report.failures:
        trigger_admin_alert(f"Recovery key export finished with {len(report.failures)} failure(s).")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
