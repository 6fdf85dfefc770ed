from __future__ import annotations

import unittest
from typing import List, Tuple
from unittest.mock import MagicMock, patch

from device_lifecycle.mutator import RemovalState, RemovalTarget, run_removal
from exceptions import DirectoryRequestError


class _FakeDirectory:
    def __init__(self, *, disable_failures=(), delete_failures=()) -> None:
        self.calls: List[Tuple[str, str]] = []
        self._disable_failures = set(disable_failures)
        self._delete_failures = set(delete_failures)

    def disable_device(self, object_id: str) -> None:
        self.calls.append(("disable", object_id))
        if object_id in self._disable_failures:
            raise DirectoryRequestError("HTTP 403 Authorization_RequestDenied: denied", status_code=403)

    def delete_device(self, object_id: str) -> None:
        self.calls.append(("delete", object_id))
        if object_id in self._delete_failures:
            raise DirectoryRequestError("HTTP 404 Request_ResourceNotFound: gone", status_code=404)


class GuardedRemovalTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("device_lifecycle.mutator.log_device_action")
        self.log_action = patcher.start()
        self.addCleanup(patcher.stop)
        self.targets = [
            RemovalTarget("id-1", "PC-1"),
            RemovalTarget("id-2", "PC-2"),
            RemovalTarget("id-3", "PC-3"),
        ]

    def test_dry_run_makes_no_calls_and_reports_every_target(self) -> None:
        directory = _FakeDirectory()

        report = run_removal(directory, self.targets, dry_run=True, disable_first=True)

        self.assertEqual(directory.calls, [])
        self.assertEqual(len(report.outcomes), 3)
        self.assertEqual(report.dry_run_count, 3)
        lines = report.report_lines()
        self.assertEqual(len(lines), 3)
        self.assertIn("would disable", lines[0])
        self.assertIn("would delete", lines[0])

    def test_dry_run_without_client(self) -> None:
        report = run_removal(None, self.targets, dry_run=True)

        self.assertEqual([outcome.planned_actions for outcome in report.outcomes], [("would delete",)] * 3)

    def test_live_run_requires_client(self) -> None:
        with self.assertRaises(ValueError):
            run_removal(None, self.targets)

    def test_disable_failure_still_deletes(self) -> None:
        directory = _FakeDirectory(disable_failures={"id-1"})

        with self.assertLogs("device_lifecycle.mutator", level="WARNING") as captured:
            report = run_removal(directory, self.targets[:1], disable_first=True)

        outcome = report.outcomes[0]
        self.assertIs(outcome.state, RemovalState.DELETED)
        self.assertTrue(outcome.disable_failed)
        self.assertIn("Authorization_RequestDenied", outcome.disable_error)
        self.assertEqual(directory.calls, [("disable", "id-1"), ("delete", "id-1")])
        self.assertTrue(any("Failed to disable" in line for line in captured.output))
        self.assertIn("DisableFailed", outcome.report_line())
        self.assertEqual(report.disable_failed_count, 1)
        self.assertEqual(report.deleted_count, 1)

    def test_state_history_for_successful_disable(self) -> None:
        report = run_removal(_FakeDirectory(), self.targets[:1], disable_first=True)

        outcome = report.outcomes[0]
        self.assertEqual(
            outcome.history,
            [
                RemovalState.PENDING,
                RemovalState.DISABLING,
                RemovalState.DISABLED,
                RemovalState.DELETING,
            ],
        )
        self.assertIs(outcome.state, RemovalState.DELETED)

    def test_delete_failure_does_not_abort_batch(self) -> None:
        directory = _FakeDirectory(delete_failures={"id-2"})

        report = run_removal(directory, self.targets)

        self.assertEqual(
            [outcome.state for outcome in report.outcomes],
            [RemovalState.DELETED, RemovalState.DELETE_FAILED, RemovalState.DELETED],
        )
        self.assertEqual(
            directory.calls,
            [("delete", "id-1"), ("delete", "id-2"), ("delete", "id-3")],
        )
        self.assertIn("Request_ResourceNotFound", report.outcomes[1].delete_error)
        self.assertTrue(report.has_failures)

    def test_rows_without_id_are_skipped(self) -> None:
        directory = _FakeDirectory()
        rows = [{"Id": "", "DisplayName": "orphan"}, {"Id": "id-9", "DisplayName": "PC-9"}]

        with self.assertLogs("device_lifecycle.mutator", level="WARNING"):
            report = run_removal(directory, rows)

        self.assertEqual(directory.calls, [("delete", "id-9")])
        self.assertIs(report.outcomes[0].state, RemovalState.SKIPPED)
        self.assertEqual(report.skipped_count, 1)
        self.assertTrue(report.report_lines()[0].startswith("[Skipped]"))

    def test_delay_between_items(self) -> None:
        sleep = MagicMock()

        run_removal(_FakeDirectory(), self.targets, delay_seconds=1.5, sleep=sleep)

        self.assertEqual(sleep.call_count, 2)
        sleep.assert_called_with(1.5)

    def test_no_delay_when_zero(self) -> None:
        sleep = MagicMock()

        run_removal(_FakeDirectory(), self.targets, delay_seconds=0, sleep=sleep)

        sleep.assert_not_called()

    def test_each_row_is_audited(self) -> None:
        run_removal(_FakeDirectory(delete_failures={"id-3"}), self.targets)

        self.assertEqual(self.log_action.call_count, 3)
        outcomes = [call.args[2] for call in self.log_action.call_args_list]
        self.assertEqual(outcomes, ["Deleted", "Deleted", "DeleteFailed"])


if __name__ == "__main__":
    unittest.main()
