from __future__ import annotations

from types import SimpleNamespace

import pytest

from device_lifecycle.recovery_keys import RecoveryKeyMetadata, resolve_attribute


def test_first_class_field_wins_over_overflow_bag():
    record = {"volumeType": "operatingSystemVolume", "additionalProperties": {"volumeType": "fixedDataVolume"}}

    assert resolve_attribute(record, "volumeType") == "operatingSystemVolume"


@pytest.mark.parametrize("first_class", [None, ""])
def test_falls_back_to_overflow_bag(first_class):
    record = {"volumeType": first_class, "additionalProperties": {"volumeType": "fixedDataVolume"}}

    assert resolve_attribute(record, "volumeType") == "fixedDataVolume"


def test_missing_everywhere_resolves_to_none():
    assert resolve_attribute({"additionalProperties": {}}, "createdDateTime") is None
    assert resolve_attribute({}, "createdDateTime") is None


def test_non_mapping_overflow_bag_is_ignored():
    assert resolve_attribute({"additionalProperties": ["volumeType"]}, "volumeType") is None


def test_objects_with_attributes_are_supported():
    record = SimpleNamespace(key=None, additionalProperties={"key": "123456"})

    assert resolve_attribute(record, "key") == "123456"


def test_false_and_zero_are_real_values():
    record = {"flag": False, "count": 0, "additionalProperties": {"flag": True, "count": 9}}

    assert resolve_attribute(record, "flag") is False
    assert resolve_attribute(record, "count") == 0


def test_metadata_combines_both_locations():
    metadata = RecoveryKeyMetadata.from_payload(
        {
            "id": "key-1",
            "deviceId": "dev-1",
            "additionalProperties": {
                "volumeType": "removableDataVolume",
                "createdDateTime": "2022-07-14T09:15:00+02:00",
            },
        }
    )

    assert metadata.key_id == "key-1"
    assert metadata.device_id == "dev-1"
    assert metadata.volume_type == "removableDataVolume"
    assert metadata.created_at == "2022-07-14T07:15:00Z"


def test_metadata_keeps_unparseable_created_text():
    metadata = RecoveryKeyMetadata.from_payload({"id": "key-2", "createdDateTime": "last tuesday"})

    assert metadata.created_at == "last tuesday"
    assert metadata.volume_type is None
