from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

STALE_EXPORT_COLUMNS = (
    "Id",
    "DeviceId",
    "DisplayName",
    "AccountEnabled",
    "OperatingSystem",
    "OperatingSystemVersion",
    "TrustType",
    "ApproximateLastSignInDateTime",
)

RECOVERY_KEY_COLUMNS = (
    "EntraObjectId",
    "DeviceId",
    "DisplayName",
    "BitLockerKeyId",
    "RecoveryKey",
    "VolumeType",
    "KeyCreated",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Return an aware UTC datetime for a Graph/CSV timestamp, or ``None``."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = _text(value).lower()
    if text in {"true", "1", "yes"}:
        return True
    if text in {"false", "0", "no"}:
        return False
    return None


@dataclass(frozen=True)
class DeviceRecord:
    """Snapshot of one directory device taken at fetch time."""

    id: str
    device_id: str = ""
    display_name: str = ""
    account_enabled: Optional[bool] = None
    operating_system: str = ""
    operating_system_version: str = ""
    trust_type: str = ""
    last_sign_in: Optional[datetime] = None

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> "DeviceRecord":
        raw_sign_in = payload.get("approximateLastSignInDateTime")
        last_sign_in = parse_timestamp(raw_sign_in)
        if last_sign_in is None and _text(raw_sign_in):
            logger.warning(
                "Unparseable sign-in timestamp %r for device %s; treating as absent",
                raw_sign_in,
                payload.get("id"),
            )
        return cls(
            id=_text(payload.get("id")),
            device_id=_text(payload.get("deviceId")),
            display_name=_text(payload.get("displayName")),
            account_enabled=_as_bool(payload.get("accountEnabled")),
            operating_system=_text(payload.get("operatingSystem")),
            operating_system_version=_text(payload.get("operatingSystemVersion")),
            trust_type=_text(payload.get("trustType")),
            last_sign_in=last_sign_in,
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DeviceRecord":
        """Build a record from a stale-device export row."""

        return cls(
            id=_text(row.get("Id")),
            device_id=_text(row.get("DeviceId")),
            display_name=_text(row.get("DisplayName")),
            account_enabled=_as_bool(row.get("AccountEnabled")),
            operating_system=_text(row.get("OperatingSystem")),
            operating_system_version=_text(row.get("OperatingSystemVersion")),
            trust_type=_text(row.get("TrustType")),
            last_sign_in=parse_timestamp(row.get("ApproximateLastSignInDateTime")),
        )

    def as_row(self) -> Dict[str, str]:
        enabled = "" if self.account_enabled is None else str(self.account_enabled)
        return {
            "Id": self.id,
            "DeviceId": self.device_id,
            "DisplayName": self.display_name,
            "AccountEnabled": enabled,
            "OperatingSystem": self.operating_system,
            "OperatingSystemVersion": self.operating_system_version,
            "TrustType": self.trust_type,
            "ApproximateLastSignInDateTime": format_timestamp(self.last_sign_in),
        }


@dataclass(frozen=True)
class OutputRow:
    """One flattened recovery-key export row.

    ``is_placeholder`` marks the stand-in row for a device that contributed no
    key entries; a key entry without an id is a real row with a null id.
    """

    entra_object_id: str
    device_id: str
    display_name: str
    bitlocker_key_id: Optional[str] = None
    recovery_key: Optional[str] = None
    volume_type: Optional[str] = None
    key_created: Optional[str] = None
    is_placeholder: bool = False

    def as_row(self) -> Dict[str, str]:
        return {
            "EntraObjectId": self.entra_object_id,
            "DeviceId": self.device_id,
            "DisplayName": self.display_name,
            "BitLockerKeyId": self.bitlocker_key_id or "",
            "RecoveryKey": self.recovery_key or "",
            "VolumeType": self.volume_type or "",
            "KeyCreated": self.key_created or "",
        }


__all__ = [
    "DeviceRecord",
    "OutputRow",
    "RECOVERY_KEY_COLUMNS",
    "STALE_EXPORT_COLUMNS",
    "format_timestamp",
    "parse_timestamp",
]
