from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from device_lifecycle.models import RECOVERY_KEY_COLUMNS, STALE_EXPORT_COLUMNS, DeviceRecord, OutputRow
from device_lifecycle.tabular import check_output_path, read_rows, write_rows
from exceptions import InputFileError, OutputFileError
from tools import decrypt_export


@pytest.fixture(autouse=True)
def _no_export_key(monkeypatch):
    monkeypatch.delenv("EXPORT_ENCRYPTION_KEY", raising=False)


def test_stale_export_columns_and_values(tmp_path):
    target = tmp_path / "stale.csv"
    record = DeviceRecord.from_graph(
        {
            "id": "obj-1",
            "deviceId": "dev-1",
            "displayName": "PC-1",
            "accountEnabled": True,
            "operatingSystem": "Windows",
            "operatingSystemVersion": "10.0.19045",
            "trustType": "AzureAd",
            "approximateLastSignInDateTime": "2025-01-02T03:04:05Z",
        }
    )

    count = write_rows(target, STALE_EXPORT_COLUMNS, [record.as_row()])

    assert count == 1
    header = target.read_text(encoding="utf-8").splitlines()[0]
    assert header == ",".join(STALE_EXPORT_COLUMNS)
    rows = read_rows(target, required_columns=("Id",))
    assert rows[0]["ApproximateLastSignInDateTime"] == "2025-01-02T03:04:05Z"
    assert rows[0]["AccountEnabled"] == "True"
    assert DeviceRecord.from_row(rows[0]) == record


def test_placeholder_rows_have_empty_key_fields(tmp_path):
    target = tmp_path / "keys.csv"
    write_rows(target, RECOVERY_KEY_COLUMNS, [OutputRow("obj-1", "dev-1", "PC-1").as_row()])

    row = read_rows(target)[0]

    assert row["EntraObjectId"] == "obj-1"
    assert row["BitLockerKeyId"] == ""
    assert row["RecoveryKey"] == ""


def test_missing_file_is_input_error(tmp_path):
    with pytest.raises(InputFileError):
        read_rows(tmp_path / "absent.csv")


def test_missing_required_column(tmp_path):
    source = tmp_path / "devices.csv"
    source.write_text("DisplayName\nPC-1\n", encoding="utf-8")

    with pytest.raises(InputFileError, match="Id"):
        read_rows(source, required_columns=("Id",))


def test_byte_order_mark_and_whitespace_are_tolerated(tmp_path):
    source = tmp_path / "devices.csv"
    source.write_bytes("\ufeffId, DisplayName\n obj-1 , PC-1 \n".encode("utf-8"))

    rows = read_rows(source, required_columns=("Id",))

    assert rows == [{"Id": "obj-1", "DisplayName": "PC-1"}]


def test_encrypted_export_round_trip(tmp_path, monkeypatch):
    monkeypatch.setenv("EXPORT_ENCRYPTION_KEY", Fernet.generate_key().decode("ascii"))
    target = tmp_path / "keys.csv"
    row = OutputRow("obj-1", "dev-1", "PC-1", "k1", "111111-222222", "operatingSystemVolume", "2024-03-01T10:00:00Z")

    write_rows(target, RECOVERY_KEY_COLUMNS, [row.as_row()], encrypted=True)

    assert b"111111-222222" not in target.read_bytes()
    assert read_rows(target)[0]["RecoveryKey"] == "111111-222222"

    plaintext = tmp_path / "plain.csv"
    assert decrypt_export.main([str(target), "--output", str(plaintext)]) == 0
    assert "111111-222222" in plaintext.read_text(encoding="utf-8")


def test_encrypted_export_without_key_is_input_error(tmp_path, monkeypatch):
    monkeypatch.setenv("EXPORT_ENCRYPTION_KEY", Fernet.generate_key().decode("ascii"))
    target = tmp_path / "keys.csv"
    write_rows(target, RECOVERY_KEY_COLUMNS, [], encrypted=True)
    monkeypatch.delenv("EXPORT_ENCRYPTION_KEY")

    with pytest.raises(InputFileError):
        read_rows(target)
    assert decrypt_export.main([str(target)]) == 1


def test_output_check_creates_missing_parent(tmp_path):
    target = tmp_path / "nested" / "out" / "stale.csv"

    assert check_output_path(target) == target
    assert target.parent.is_dir()
    assert not target.exists()


def test_output_check_rejects_directory(tmp_path):
    with pytest.raises(OutputFileError, match="directory"):
        check_output_path(tmp_path)


def test_output_check_rejects_parent_that_is_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(OutputFileError):
        check_output_path(blocker / "stale.csv")


def test_write_to_directory_is_output_error(tmp_path):
    target = tmp_path / "keys.csv"
    target.mkdir()

    with pytest.raises(OutputFileError):
        write_rows(target, RECOVERY_KEY_COLUMNS, [OutputRow("obj-1", "dev-1", "PC-1").as_row()])

    assert target.is_dir()
    assert [path.name for path in tmp_path.iterdir()] == ["keys.csv"]
