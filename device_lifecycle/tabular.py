from __future__ import annotations

import contextlib
import csv
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence

from exceptions import InputFileError, OutputFileError
from security.encryption import EncryptionError, decrypt_export, encrypt_export, is_encrypted_export

logger = logging.getLogger(__name__)


def read_rows(path: str | Path, required_columns: Sequence[str] = ()) -> List[Dict[str, str]]:
    """Load a CSV export, decrypting it first when it carries the encrypted-export header.

    Raises:
        InputFileError: the file is missing, unreadable, cannot be decrypted,
            or its header lacks one of ``required_columns``.
    """

    source = Path(path).expanduser()
    if not source.is_file():
        raise InputFileError(f"Input file not found: {source}")

    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise InputFileError(f"Unable to read {source}: {exc}") from exc

    if is_encrypted_export(raw):
        try:
            raw = decrypt_export(raw)
        except EncryptionError as exc:
            raise InputFileError(f"Unable to decrypt {source}: {exc}") from exc

    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise InputFileError(f"{source} is not UTF-8 text") from exc

    reader = csv.DictReader(io.StringIO(text, newline=""))
    header = [name.strip() for name in (reader.fieldnames or [])]
    missing = [column for column in required_columns if column not in header]
    if missing:
        raise InputFileError(f"{source} is missing required column(s): {', '.join(missing)}")

    rows = [
        {(key or "").strip(): (value or "").strip() for key, value in row.items() if key is not None}
        for row in reader
    ]
    logger.info("Loaded %s rows from %s", len(rows), source)
    return rows


def check_output_path(path: str | Path) -> Path:
    """Make sure an export can be written to ``path`` before any work starts.

    Creates the parent directory when needed.  Raises :class:`OutputFileError`
    when ``path`` is a directory or its parent cannot be created or written.
    """

    target = Path(path).expanduser()
    if target.is_dir():
        raise OutputFileError(f"Output path is a directory: {target}")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputFileError(f"Unable to create {target.parent}: {exc}") from exc
    if not os.access(target.parent, os.W_OK):
        raise OutputFileError(f"Output directory is not writable: {target.parent}")
    if target.exists() and not os.access(target, os.W_OK):
        raise OutputFileError(f"Output file is not writable: {target}")
    return target


def _discard(tmp_name: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(tmp_name)


def write_rows(
    path: str | Path,
    columns: Sequence[str],
    rows: Iterable[Mapping[str, str]],
    *,
    encrypted: bool = False,
) -> int:
    """Write ``rows`` as CSV in one go, replacing ``path`` atomically.

    Returns the number of data rows written.  Filesystem failures are raised
    as :class:`OutputFileError`; an existing file is left untouched.
    """

    target = Path(path).expanduser()
    buffer = io.StringIO(newline="")
    writer = csv.DictWriter(buffer, fieldnames=list(columns), extrasaction="ignore")
    writer.writeheader()
    count = 0
    for row in rows:
        writer.writerow(row)
        count += 1

    data = buffer.getvalue().encode("utf-8")
    if encrypted:
        data = encrypt_export(data)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    except OSError as exc:
        raise OutputFileError(f"Unable to write {target}: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, target)
    except OSError as exc:
        _discard(tmp_name)
        raise OutputFileError(f"Unable to write {target}: {exc}") from exc
    except BaseException:
        _discard(tmp_name)
        raise

    logger.info("Wrote %s rows to %s%s", count, target, " (encrypted)" if encrypted else "")
    return count


__all__ = ["check_output_path", "read_rows", "write_rows"]
