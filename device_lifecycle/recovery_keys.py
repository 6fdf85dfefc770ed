"""BitLocker recovery key extraction.

Keys are read in two steps: the metadata listing for a device, then one
request per key for the secret value.  Each (device, key) pair becomes one
:class:`OutputRow`; a device without keys still produces a single placeholder
row so the export accounts for every input device.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol

from device_lifecycle.models import DeviceRecord, OutputRow, format_timestamp, parse_timestamp
from directory.logging_utils import key_log_extra
from exceptions import DirectoryRequestError
from monitoring import log_device_action

logger = logging.getLogger(__name__)

OVERFLOW_BAG = "additionalProperties"


class RecoveryKeySource(Protocol):
    def list_recovery_keys(self, device_id: str) -> List[Mapping[str, Any]]: ...

    def get_recovery_key(self, key_id: str) -> Mapping[str, Any]: ...


def _from_first_class_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _from_overflow_bag(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        bag = record.get(OVERFLOW_BAG)
    else:
        bag = getattr(record, OVERFLOW_BAG, None)
    if isinstance(bag, Mapping):
        return bag.get(name)
    return None


# Ordered: the first strategy that yields a value wins.
_LOOKUP_STRATEGIES = (_from_first_class_field, _from_overflow_bag)


def resolve_attribute(record: Any, name: str) -> Any:
    """Return ``name`` from ``record``, preferring the first-class field.

    Depending on the service version an attribute arrives either as a regular
    field or inside the ``additionalProperties`` bag.  ``None`` and empty
    strings count as absent.
    """

    for strategy in _LOOKUP_STRATEGIES:
        value = strategy(record, name)
        if value is not None and value != "":
            return value
    return None


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_created(value: Any) -> Optional[str]:
    parsed = parse_timestamp(value)
    if parsed is not None:
        return format_timestamp(parsed)
    return _text_or_none(value)


@dataclass(frozen=True)
class RecoveryKeyMetadata:
    key_id: Optional[str]
    device_id: Optional[str]
    volume_type: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_payload(cls, payload: Any) -> "RecoveryKeyMetadata":
        return cls(
            key_id=_text_or_none(resolve_attribute(payload, "id")),
            device_id=_text_or_none(resolve_attribute(payload, "deviceId")),
            volume_type=_text_or_none(resolve_attribute(payload, "volumeType")),
            created_at=_normalize_created(resolve_attribute(payload, "createdDateTime")),
        )


@dataclass
class KeyFailure:
    entra_object_id: str
    device_id: str
    key_id: Optional[str]
    stage: str
    error: str


@dataclass
class ExtractionReport:
    rows: List[OutputRow] = field(default_factory=list)
    devices_processed: int = 0
    devices_skipped: int = 0
    keys_found: int = 0
    keys_resolved: int = 0
    failures: List[KeyFailure] = field(default_factory=list)

    @property
    def placeholder_rows(self) -> int:
        return sum(1 for row in self.rows if row.is_placeholder)

    def summary(self) -> str:
        return (
            f"Recovery key export processed {self.devices_processed} devices "
            f"(skipped={self.devices_skipped}): rows={len(self.rows)}, keys={self.keys_found}, "
            f"resolved={self.keys_resolved}, placeholders={self.placeholder_rows}, "
            f"failures={len(self.failures)}"
        )


def _placeholder(device: DeviceRecord) -> OutputRow:
    return OutputRow(
        entra_object_id=device.id,
        device_id=device.device_id,
        display_name=device.display_name,
        is_placeholder=True,
    )


def _fetch_key_value(
    client: RecoveryKeySource,
    device: DeviceRecord,
    metadata: RecoveryKeyMetadata,
    report: ExtractionReport,
) -> Optional[str]:
    if metadata.key_id is None:
        report.failures.append(
            KeyFailure(device.id, device.device_id, None, "fetch", "key metadata has no id")
        )
        logger.warning(
            "Recovery key entry without an id for device %s; value not fetched",
            device.device_id,
            extra=key_log_extra(device_id=device.device_id, reason="missing_key_id"),
        )
        return None

    try:
        payload = client.get_recovery_key(metadata.key_id)
    except DirectoryRequestError as exc:
        report.failures.append(
            KeyFailure(device.id, device.device_id, metadata.key_id, "fetch", str(exc))
        )
        logger.warning(
            "Failed to fetch recovery key %s for device %s: %s",
            metadata.key_id,
            device.device_id,
            exc,
            extra=key_log_extra(
                device_id=device.device_id, key_id=metadata.key_id, reason="fetch_failed"
            ),
        )
        return None

    value = _text_or_none(resolve_attribute(payload, "key"))
    if value is None:
        report.failures.append(
            KeyFailure(device.id, device.device_id, metadata.key_id, "fetch", "no key value returned")
        )
        logger.warning(
            "Recovery key %s for device %s returned no value",
            metadata.key_id,
            device.device_id,
            extra=key_log_extra(
                device_id=device.device_id, key_id=metadata.key_id, reason="empty_value"
            ),
        )
        return None

    report.keys_resolved += 1
    logger.debug(
        "Resolved recovery key %s",
        metadata.key_id,
        extra=key_log_extra(
            device_id=device.device_id,
            key_id=metadata.key_id,
            recovery_key=value,
            reason="resolved",
        ),
    )
    return value


def _extract_device(
    client: RecoveryKeySource,
    device: DeviceRecord,
    report: ExtractionReport,
    *,
    delay_seconds: float,
    sleep: Callable[[float], None],
) -> List[OutputRow]:
    try:
        entries = client.list_recovery_keys(device.device_id)
    except DirectoryRequestError as exc:
        report.failures.append(KeyFailure(device.id, device.device_id, None, "list", str(exc)))
        logger.warning(
            "Failed to list recovery keys for device %s (%s): %s",
            device.device_id,
            device.display_name,
            exc,
            extra=key_log_extra(device_id=device.device_id, reason="list_failed"),
        )
        return [_placeholder(device)]

    if not entries:
        logger.info("No recovery keys for device %s (%s)", device.device_id, device.display_name)
        return [_placeholder(device)]

    rows: List[OutputRow] = []
    for entry in entries:
        report.keys_found += 1
        metadata = RecoveryKeyMetadata.from_payload(entry)
        value = _fetch_key_value(client, device, metadata, report)
        rows.append(
            OutputRow(
                entra_object_id=device.id,
                device_id=device.device_id,
                display_name=device.display_name,
                bitlocker_key_id=metadata.key_id,
                recovery_key=value,
                volume_type=metadata.volume_type,
                key_created=metadata.created_at,
            )
        )
        if delay_seconds > 0:
            sleep(delay_seconds)
    return rows


def extract_recovery_keys(
    client: RecoveryKeySource,
    devices: Iterable[DeviceRecord],
    *,
    skip_missing_device_id: bool = False,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ExtractionReport:
    """Flatten the recovery keys of ``devices`` into export rows.

    Devices are handled in input order and keys in listing order.  A device
    without a ``device_id`` is skipped when ``skip_missing_device_id`` is set,
    otherwise it gets a placeholder row.  A failed value fetch keeps the row
    with ``recovery_key=None``; it never drops sibling keys or other devices.
    """

    report = ExtractionReport()
    for device in devices:
        if not device.device_id:
            if skip_missing_device_id:
                report.devices_skipped += 1
                logger.warning("Skipping device %s (%s): no DeviceId", device.id, device.display_name)
                log_device_action(
                    device.id,
                    "extract_recovery_keys",
                    "Skipped",
                    source="export_recovery_keys",
                    display_name=device.display_name or None,
                    error="missing DeviceId",
                )
                continue
            logger.warning(
                "Device %s (%s) has no DeviceId; writing placeholder row",
                device.id,
                device.display_name,
            )
            rows = [_placeholder(device)]
        else:
            failures_before = len(report.failures)
            rows = _extract_device(
                client, device, report, delay_seconds=delay_seconds, sleep=sleep
            )
            new_failures = report.failures[failures_before:]
            log_device_action(
                device.id,
                "extract_recovery_keys",
                "Failed" if new_failures else "Exported",
                source="export_recovery_keys",
                display_name=device.display_name or None,
                metadata={
                    "device_id": device.device_id,
                    "keys": sum(1 for row in rows if not row.is_placeholder),
                    "failed_keys": [failure.key_id for failure in new_failures],
                },
            )

        report.devices_processed += 1
        report.rows.extend(rows)

    return report


__all__ = [
    "ExtractionReport",
    "KeyFailure",
    "OVERFLOW_BAG",
    "RecoveryKeyMetadata",
    "extract_recovery_keys",
    "resolve_attribute",
]
