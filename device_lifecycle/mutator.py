"""Guarded disable/delete workflow for directory devices.

Each target walks a small state machine::

    Pending -> (Disabling -> Disabled | DisableFailed)? -> Deleting -> Deleted | DeleteFailed

A failed disable is recorded but does not block the delete.  A failed delete
is final for the run; it is never retried and never stops the batch.  Rows
without a directory id are reported as ``Skipped`` and make no calls.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from exceptions import DirectoryRequestError
from monitoring import log_device_action

logger = logging.getLogger(__name__)


class RemovalState(Enum):
    PENDING = "Pending"
    DISABLING = "Disabling"
    DISABLED = "Disabled"
    DISABLE_FAILED = "DisableFailed"
    DELETING = "Deleting"
    DELETED = "Deleted"
    DELETE_FAILED = "DeleteFailed"
    SKIPPED = "Skipped"
    DRY_RUN = "DryRun"


class DeviceMutator(Protocol):
    def disable_device(self, object_id: str) -> None: ...

    def delete_device(self, object_id: str) -> None: ...


@dataclass(slots=True)
class RemovalTarget:
    object_id: str
    display_name: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RemovalTarget":
        return cls(
            object_id=str(row.get("Id") or "").strip(),
            display_name=str(row.get("DisplayName") or "").strip(),
        )


@dataclass(slots=True)
class RemovalOutcome:
    object_id: str
    display_name: str
    state: RemovalState = RemovalState.PENDING
    history: List[RemovalState] = field(default_factory=list)
    disable_error: Optional[str] = None
    delete_error: Optional[str] = None
    planned_actions: Tuple[str, ...] = ()

    def advance(self, state: RemovalState) -> None:
        self.history.append(self.state)
        self.state = state

    @property
    def disable_failed(self) -> bool:
        return RemovalState.DISABLE_FAILED in self.history or self.state is RemovalState.DISABLE_FAILED

    @property
    def label(self) -> str:
        name = f" ({self.display_name})" if self.display_name else ""
        return f"{self.object_id or '<missing id>'}{name}"

    def report_line(self) -> str:
        if self.state is RemovalState.DRY_RUN:
            return f"[DryRun] {self.label}: {', '.join(self.planned_actions)}"
        line = f"[{self.state.value}] {self.label}"
        if self.state is RemovalState.DELETE_FAILED:
            line += f": {self.delete_error}"
        if self.disable_error:
            line += f" [DisableFailed: {self.disable_error}]"
        return line


@dataclass
class RemovalReport:
    dry_run: bool
    disable_first: bool
    outcomes: List[RemovalOutcome] = field(default_factory=list)

    def _count(self, state: RemovalState) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state is state)

    @property
    def deleted_count(self) -> int:
        return self._count(RemovalState.DELETED)

    @property
    def delete_failed_count(self) -> int:
        return self._count(RemovalState.DELETE_FAILED)

    @property
    def disable_failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.disable_failed)

    @property
    def skipped_count(self) -> int:
        return self._count(RemovalState.SKIPPED)

    @property
    def dry_run_count(self) -> int:
        return self._count(RemovalState.DRY_RUN)

    @property
    def has_failures(self) -> bool:
        return bool(self.delete_failed_count or self.disable_failed_count)

    def report_lines(self) -> List[str]:
        return [outcome.report_line() for outcome in self.outcomes]

    def summary(self) -> str:
        mode = "dry-run" if self.dry_run else "live"
        return (
            f"Stale device removal ({mode}) processed {len(self.outcomes)} rows: "
            f"deleted={self.deleted_count}, delete_failed={self.delete_failed_count}, "
            f"disable_failed={self.disable_failed_count}, skipped={self.skipped_count}, "
            f"dry_run={self.dry_run_count}"
        )


def _plan(disable_first: bool) -> Tuple[str, ...]:
    if disable_first:
        return ("would disable", "would delete")
    return ("would delete",)


def _process_target(
    client: Optional[DeviceMutator],
    target: RemovalTarget,
    *,
    dry_run: bool,
    disable_first: bool,
) -> RemovalOutcome:
    outcome = RemovalOutcome(object_id=target.object_id, display_name=target.display_name)

    if not target.object_id:
        logger.warning("Skipping row without a device Id (DisplayName=%r)", target.display_name)
        outcome.advance(RemovalState.SKIPPED)
        return outcome

    if dry_run:
        outcome.planned_actions = _plan(disable_first)
        outcome.advance(RemovalState.DRY_RUN)
        logger.info("Dry run: %s %s", " and ".join(outcome.planned_actions), outcome.label)
        return outcome

    if disable_first:
        outcome.advance(RemovalState.DISABLING)
        try:
            client.disable_device(target.object_id)
        except DirectoryRequestError as exc:
            outcome.disable_error = str(exc)
            outcome.advance(RemovalState.DISABLE_FAILED)
            logger.warning("Failed to disable %s: %s; continuing with delete", outcome.label, exc)
        else:
            outcome.advance(RemovalState.DISABLED)

    outcome.advance(RemovalState.DELETING)
    try:
        client.delete_device(target.object_id)
    except DirectoryRequestError as exc:
        outcome.delete_error = str(exc)
        outcome.advance(RemovalState.DELETE_FAILED)
        logger.warning("Failed to delete %s: %s", outcome.label, exc)
    else:
        outcome.advance(RemovalState.DELETED)
        logger.info("Deleted %s", outcome.label)
    return outcome


def run_removal(
    client: Optional[DeviceMutator],
    targets: Iterable[Union[RemovalTarget, Mapping[str, Any]]],
    *,
    dry_run: bool = False,
    disable_first: bool = False,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> RemovalReport:
    """Disable (optionally) and delete every target, one at a time, in input order.

    Args:
        client: Directory client exposing ``disable_device``/``delete_device``;
            may be ``None`` for a dry run.
        targets: :class:`RemovalTarget` objects or deletion-input rows with an
            ``Id`` column and an optional ``DisplayName``.
        dry_run: Report intended actions without calling the directory.
        disable_first: Disable each device before deleting it.
        delay_seconds: Pause between consecutive items when greater than zero.
        sleep: Injected for tests.

    Returns:
        A :class:`RemovalReport` with one outcome per input row.
    """

    if client is None and not dry_run:
        raise ValueError("a directory client is required unless dry_run is set")

    report = RemovalReport(dry_run=dry_run, disable_first=disable_first)
    for index, item in enumerate(targets):
        if index and delay_seconds > 0:
            sleep(delay_seconds)

        target = item if isinstance(item, RemovalTarget) else RemovalTarget.from_row(item)
        outcome = _process_target(client, target, dry_run=dry_run, disable_first=disable_first)
        report.outcomes.append(outcome)

        log_device_action(
            target.object_id or None,
            "remove",
            outcome.state.value,
            source="remove_stale_devices",
            display_name=target.display_name or None,
            error=outcome.delete_error,
            metadata={
                "dry_run": dry_run,
                "disable_first": disable_first,
                "disable_error": outcome.disable_error,
            },
        )

    return report


__all__ = [
    "RemovalOutcome",
    "RemovalReport",
    "RemovalState",
    "RemovalTarget",
    "run_removal",
]
