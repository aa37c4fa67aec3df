"""Typed failures raised by the Hive engine.

Callers branch on the class rather than on message text:

- ``ValidationError`` and ``TaskUnavailable`` are caller-fixable.
- ``NotFound`` is surfaced as-is.
- ``NoEligibleWork`` is an expected allocation outcome ("try later").
- ``StoreUnavailable`` is transient; the whole operation may be retried.
- ``InvariantViolation`` aborts the operation before anything is written.
"""

from __future__ import annotations


class HiveError(Exception):
    """Base class for every engine error."""

    code = "hive_error"

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": str(self)}


class ValidationError(HiveError):
    """Malformed input such as bad criteria or an asset without a url."""

    code = "validation_error"


class NotFound(HiveError):
    """Unknown project, task, asset, user or assignment."""

    code = "not_found"

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"No {kind} record with id {record_id!r}")


class NoEligibleWork(HiveError):
    """No asset currently satisfies the task's assignment criteria for this user."""

    code = "no_eligible_work"

    def __init__(self, task_id: str, user_id: str):
        self.task_id = task_id
        self.user_id = user_id
        super().__init__(f"No eligible assets for task {task_id!r} and user {user_id!r}")


class TaskUnavailable(HiveError):
    """The task exists but is not in the ``available`` state."""

    code = "task_unavailable"

    def __init__(self, task_id: str, state: str):
        self.task_id = task_id
        self.state = state
        super().__init__(f"Task {task_id!r} is {state}, not available")


class StoreUnavailable(HiveError):
    """The record store failed or timed out."""

    code = "store_unavailable"


class InvariantViolation(HiveError):
    """A write would leave counters or consensus state out of range."""

    code = "invariant_violation"


class CompletionSweepError(HiveError):
    """A single asset could not be completed during a consensus sweep."""

    code = "completion_failed"

    def __init__(self, asset_id: str, cause: HiveError):
        self.asset_id = asset_id
        self.cause = cause
        super().__init__(f"Asset {asset_id!r}: {cause}")
