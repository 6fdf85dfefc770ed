"""Stale device detection, guarded removal and BitLocker key export for Entra ID."""

from .models import DeviceRecord, OutputRow
from .mutator import RemovalReport, RemovalState, RemovalTarget, run_removal
from .recovery_keys import ExtractionReport, extract_recovery_keys, resolve_attribute
from .staleness import StaleScanReport, build_exclusion_index, classify_stale, scan_stale_devices

__all__ = [
    "DeviceRecord",
    "ExtractionReport",
    "OutputRow",
    "RemovalReport",
    "RemovalState",
    "RemovalTarget",
    "StaleScanReport",
    "build_exclusion_index",
    "classify_stale",
    "extract_recovery_keys",
    "resolve_attribute",
    "run_removal",
    "scan_stale_devices",
]
