#!/usr/bin/env python3
"""Print or write a plaintext copy of an encrypted recovery-key export."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from security.encryption import EncryptionError, decrypt_export, is_encrypted_export


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Decrypt an export written with --encrypt.")
    parser.add_argument("input", type=Path, help="Encrypted export file.")
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Write the plaintext CSV here instead of standard output.",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    if not args.input.is_file():
        print(f"Error: input file not found: {args.input}", file=sys.stderr)
        return 1

    raw = args.input.read_bytes()
    if not is_encrypted_export(raw):
        print(f"Note: {args.input} is not encrypted; copying as-is.", file=sys.stderr)

    try:
        plaintext = decrypt_export(raw)
    except EncryptionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.output is None:
        sys.stdout.write(plaintext.decode("utf-8-sig"))
        return 0

    args.output.write_bytes(plaintext)
    print(f"Wrote plaintext export to {args.output}", file=sys.stderr)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
