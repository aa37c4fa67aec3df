from __future__ import annotations

from pydantic import BaseModel, Field


class MetaProperty(BaseModel):
    name: str
    type: str = "string"


class Project(BaseModel):
    """A single crowdsourcing app. Every other record is scoped to one."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    meta_properties: list[MetaProperty] = Field(default_factory=list)


class ProjectSummary(Project):
    """A project with tallies computed from the store at read time."""

    asset_count: int = 0
    task_count: int = 0
    user_count: int = 0
    assignment_count: dict[str, int] = Field(default_factory=dict)
    assignment_count_by_task: dict[str, dict[str, int]] = Field(default_factory=dict)
