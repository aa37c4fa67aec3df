from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from hive_mcp.models.criteria import AssignmentCriteria, CompletionCriteria, check_name


class TaskState(str, Enum):
    AVAILABLE = "available"
    WAITING = "waiting"
    CLOSED = "closed"  # reserved
    HIDDEN = "hidden"  # reserved


def task_id(project: str, name: str) -> str:
    return f"{project}-{name.lower()}"


class Task(BaseModel):
    """A named kind of work with its own eligibility and completion rules."""

    id: str = ""
    project: str
    name: str
    description: str = ""
    current_state: TaskState = TaskState.WAITING
    assignment_criteria: AssignmentCriteria = Field(default_factory=AssignmentCriteria)
    completion_criteria: CompletionCriteria = Field(default_factory=CompletionCriteria)

    @field_validator("name")
    @classmethod
    def _sluggable_name(cls, value: str) -> str:
        return check_name(value, "Task name")

    @field_validator("assignment_criteria", "completion_criteria", mode="before")
    @classmethod
    def _null_criteria(cls, value: object) -> object:
        return {} if value is None else value

    def model_post_init(self, __context: object) -> None:
        self.id = task_id(self.project, self.name)

    @property
    def is_available(self) -> bool:
        return self.current_state == TaskState.AVAILABLE
