from __future__ import annotations

import hashlib
from typing import Any, Dict, Optional


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def mask_recovery_key(value: Optional[str]) -> str:
    if not value:
        return "key-none"
    return f"key-{_digest(value)}"


def key_log_extra(
    *,
    device_id: Optional[str] = None,
    key_id: Optional[str] = None,
    recovery_key: Optional[str] = None,
    reason: Optional[str] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {**kwargs}
    if device_id is not None:
        payload["device_id"] = device_id
    if key_id is not None:
        payload["bitlocker_key_id"] = key_id
    if recovery_key is not None:
        payload["masked_recovery_key"] = mask_recovery_key(recovery_key)
    if reason:
        payload["key_event"] = reason
    return payload


__all__ = ["mask_recovery_key", "key_log_extra"]
