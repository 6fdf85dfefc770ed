"""Stale device detection.

A device is stale when its approximate last sign-in is at or before the
cutoff (``now - stale_days``).  Devices without a sign-in timestamp are only
reported when the caller opts in, because some active devices never populate
the attribute.  Autopilot-provisioned devices can be protected from the sweep
by passing an exclusion index built from the provisioned-identity list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Any, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Set

from device_lifecycle.models import DeviceRecord

logger = logging.getLogger(__name__)

# Autopilot identities reference the directory object through this field.
PROVISIONED_REFERENCE_FIELD = "azureActiveDirectoryDeviceId"


class InventorySource(Protocol):
    def list_devices(self) -> List[Mapping[str, Any]]: ...

    def list_provisioned_identities(self) -> List[Mapping[str, Any]]: ...


@dataclass
class StaleScanReport:
    """Structured output describing one classification pass."""

    cutoff: datetime
    total_devices: int = 0
    stale: List[DeviceRecord] = field(default_factory=list)
    excluded_provisioned: int = 0
    missing_timestamp: int = 0
    missing_timestamp_included: int = 0

    @property
    def stale_count(self) -> int:
        return len(self.stale)

    def summary(self) -> str:
        return (
            f"Stale device scan (cutoff {self.cutoff.isoformat()}) checked {self.total_devices} devices: "
            f"stale={self.stale_count}, excluded_provisioned={self.excluded_provisioned}, "
            f"no_timestamp={self.missing_timestamp} (included={self.missing_timestamp_included})"
        )


def compute_cutoff(stale_days: int, now: Optional[datetime] = None) -> datetime:
    if stale_days < 0:
        raise ValueError("stale_days must not be negative")
    current = now or datetime.now(timezone.utc)
    return current - timedelta(days=stale_days)


def fetch_inventory(client: InventorySource) -> List[DeviceRecord]:
    """Retrieve every directory device with the export projection."""

    devices = [DeviceRecord.from_graph(payload) for payload in client.list_devices()]
    logger.info("Fetched %s devices from the directory", len(devices))
    return devices


def build_exclusion_index(identities: Iterable[Mapping[str, Any]]) -> FrozenSet[str]:
    """Return the directory ids referenced by provisioned (Autopilot) identities."""

    index = set()
    for identity in identities:
        reference = identity.get(PROVISIONED_REFERENCE_FIELD)
        if reference is None:
            continue
        text = str(reference).strip().lower()
        if text:
            index.add(text)
    return frozenset(index)


def is_stale(
    device: DeviceRecord,
    cutoff: datetime,
    *,
    include_no_timestamp: bool = False,
) -> bool:
    if device.last_sign_in is None:
        return include_no_timestamp
    return device.last_sign_in <= cutoff


def classify_stale(
    devices: Sequence[DeviceRecord],
    cutoff: datetime,
    *,
    include_no_timestamp: bool = False,
    exclude_provisioned: bool = False,
    exclusion_index: AbstractSet[str] = frozenset(),
) -> StaleScanReport:
    """Filter ``devices`` down to the stale ones, preserving input order.

    ``exclusion_index`` is matched case-insensitively against ``device.id``.
    """

    protected: Set[str] = set()
    if exclude_provisioned:
        protected = {str(reference).strip().lower() for reference in exclusion_index}
    report = StaleScanReport(cutoff=cutoff, total_devices=len(devices))
    for device in devices:
        if device.id.lower() in protected:
            report.excluded_provisioned += 1
            logger.debug("Device %s (%s) is provisioned; never stale", device.id, device.display_name)
            continue

        if device.last_sign_in is None:
            report.missing_timestamp += 1

        if is_stale(device, cutoff, include_no_timestamp=include_no_timestamp):
            report.stale.append(device)
            if device.last_sign_in is None:
                report.missing_timestamp_included += 1

    return report


def scan_stale_devices(
    client: InventorySource,
    stale_days: int,
    *,
    include_no_timestamp: bool = False,
    exclude_provisioned: bool = False,
    now: Optional[datetime] = None,
) -> StaleScanReport:
    """Fetch the inventory, build the exclusion index if asked, and classify."""

    cutoff = compute_cutoff(stale_days, now)
    devices = fetch_inventory(client)

    exclusion_index: FrozenSet[str] = frozenset()
    if exclude_provisioned:
        exclusion_index = build_exclusion_index(client.list_provisioned_identities())
        logger.info("Loaded %s provisioned device references", len(exclusion_index))

    return classify_stale(
        devices,
        cutoff,
        include_no_timestamp=include_no_timestamp,
        exclude_provisioned=exclude_provisioned,
        exclusion_index=exclusion_index,
    )


__all__ = [
    "PROVISIONED_REFERENCE_FIELD",
    "StaleScanReport",
    "build_exclusion_index",
    "classify_stale",
    "compute_cutoff",
    "fetch_inventory",
    "is_stale",
    "scan_stale_devices",
]
