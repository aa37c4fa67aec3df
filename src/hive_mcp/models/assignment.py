from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from hive_mcp.errors import ValidationError
from hive_mcp.models.asset import Asset

ASSIGNMENT_ID_SEPARATOR = "::"


class AssignmentState(str, Enum):
    UNFINISHED = "unfinished"
    SKIPPED = "skipped"
    FINISHED = "finished"
    VERIFIED = "verified"


# Moves a worker may make; ``verified`` is only ever set by the consensus sweep.
SUBMITTABLE_STATES = frozenset({AssignmentState.FINISHED, AssignmentState.SKIPPED})


def check_identifier(part: str) -> str:
    if not part or ASSIGNMENT_ID_SEPARATOR in part:
        raise ValidationError(
            f"Identifier {part!r} is empty or contains {ASSIGNMENT_ID_SEPARATOR!r}"
        )
    return part


def assignment_id(project: str, task_id: str, asset_id: str, user_id: str) -> str:
    """Compose the deterministic id for one user's work on one task and asset."""
    parts = (project, task_id, asset_id, user_id)
    return ASSIGNMENT_ID_SEPARATOR.join(check_identifier(part) for part in parts)


class Assignment(BaseModel):
    """One user's instance of doing one task on one asset."""

    id: str
    user: str
    project: str
    task: str
    asset: Asset  # snapshot copy, may lag the asset record
    state: AssignmentState = AssignmentState.UNFINISHED
    submitted_data: Optional[dict[str, Any]] = None


class AssignmentSubmission(BaseModel):
    """What a worker sends back when finishing or skipping an assignment."""

    id: str
    state: AssignmentState
    submitted_data: Optional[dict[str, Any]] = None
