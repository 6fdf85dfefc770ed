from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "7"))
LOG_DIR = Path(os.getenv("LOG_DIRECTORY", "logs")).expanduser()

_LAST_CLEANUP: Optional[date] = None


def _ensure_log_dir() -> Path:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR


def _get_log_path(log_date: Optional[date] = None) -> Path:
    target_date = (log_date or date.today()).isoformat()
    return _ensure_log_dir() / f"{target_date}.jsonl"


def _cleanup_old_logs(today: Optional[date] = None) -> None:
    global _LAST_CLEANUP
    current_day = today or date.today()
    if _LAST_CLEANUP == current_day:
        return
    _LAST_CLEANUP = current_day

    if RETENTION_DAYS <= 0:
        return

    cutoff_date = current_day - timedelta(days=max(RETENTION_DAYS - 1, 0))
    for path in _ensure_log_dir().glob("*.jsonl"):
        try:
            file_date = date.fromisoformat(path.stem)
        except ValueError:
            continue
        if file_date < cutoff_date:
            try:
                path.unlink()
            except FileNotFoundError:  # pragma: no cover - best effort cleanup
                continue


def _write_log_entry(category: str, payload: Dict[str, Any]) -> None:
    timestamp = datetime.now(timezone.utc)
    record = {
        "timestamp": timestamp.isoformat(),
        "category": category,
        **payload,
    }
    path = _get_log_path()
    with path.open("a", encoding="utf-8") as fh:
        json.dump(record, fh, ensure_ascii=False, sort_keys=True)
        fh.write("\n")
    _cleanup_old_logs(timestamp.date())


def setup_logging(level_name: str = "INFO") -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    root.addHandler(console_handler)

    for logger_name in ("system", "activity", "directory"):
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        logger.handlers.clear()
        logger.propagate = True

    # Token acquisition chatter from msal/urllib3 is noise at INFO.
    for noisy in ("msal", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


def log_device_action(
    device_id: Optional[str],
    action: str,
    outcome: str,
    *,
    source: str = "",
    display_name: Optional[str] = None,
    error: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Append one audit entry describing what happened to a single device.

    Callers must never pass recovery key values in ``metadata``.
    """

    logging.getLogger("activity").info(
        "device=%s name=%s action=%s outcome=%s source=%s error=%s",
        device_id,
        display_name,
        action,
        outcome,
        source,
        error,
    )
    payload: Dict[str, Any] = {
        "device": {"id": device_id, "display_name": display_name},
        "action": action,
        "outcome": outcome,
        "source": source or None,
    }
    if error:
        payload["error"] = error
    if metadata:
        payload["metadata"] = metadata
    _write_log_entry("activity", payload)


def log_system_error(message: str, exc: Optional[BaseException] = None) -> None:
    logger = logging.getLogger("system")
    if exc:
        logger.error("%s: %s", message, exc)
        payload: Dict[str, Any] = {
            "level": "ERROR",
            "message": message,
            "exception": {
                "type": type(exc).__name__,
                "message": str(exc),
            },
        }
    else:
        logger.error("%s", message)
        payload = {"level": "ERROR", "message": message}
    _write_log_entry("system", payload)


def log_system_info(message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
    logging.getLogger("system").info("%s", message)
    payload: Dict[str, Any] = {"level": "INFO", "message": message}
    if metadata:
        payload["metadata"] = metadata
    _write_log_entry("system", payload)


def trigger_admin_alert(message: str) -> None:
    """Raise an operational alert for administrators via the system logger."""

    logging.getLogger("system").warning("[ADMIN ALERT] %s", message)
    _write_log_entry(
        "system",
        {"level": "WARNING", "message": message, "tag": "admin_alert"},
    )


__all__ = [
    "LOG_DIR",
    "RETENTION_DAYS",
    "log_device_action",
    "log_system_error",
    "log_system_info",
    "setup_logging",
    "trigger_admin_alert",
]
