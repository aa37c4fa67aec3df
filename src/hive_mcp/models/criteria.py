"""Rules attached to a task that decide which assets it may be given for,
and when the answers collected for an asset count as agreed.

Example assignment criteria for a ``transcribe`` task that only wants assets
a prior ``find`` task agreed were advertisements, and that have not been
transcribed yet::

    {
        "submitted_data": {
            "find": {"category": "advertisement"},
            "transcribe": {}
        }
    }
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hive_mcp.db.predicates import All, Missing, Predicate, Term, all_of, field_path

NAME_PATTERN = re.compile(r"^[\w\-]+$")


def check_name(value: str, what: str) -> str:
    if not NAME_PATTERN.match(value):
        raise ValueError(f"{what} {value!r} may only contain letters, digits, '_' and '-'")
    return value


class AssignmentCriteria(BaseModel):
    """Prerequisite task name -> rule. Entries combine with AND.

    An empty rule means the asset must have no agreed answer for that task
    yet. A non-empty rule lists fields the agreed answer must match exactly.
    """

    submitted_data: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("submitted_data", mode="before")
    @classmethod
    def _rules_are_mappings(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("assignment criteria must map task names to rules")
        for task_name, rule in value.items():
            check_name(task_name, "Prerequisite task")
            if rule is None:
                continue
            if not isinstance(rule, dict):
                raise ValueError(
                    f"rule for task {task_name!r} must be a mapping, got {type(rule).__name__}"
                )
            for field_name, expected in rule.items():
                check_name(field_name, "Rule field")
                if isinstance(expected, (dict, list)):
                    raise ValueError(
                        f"rule field {task_name}.{field_name} must be a single value, "
                        f"got {type(expected).__name__}"
                    )
        return {name: rule or {} for name, rule in value.items()}


class CompletionCriteria(BaseModel):
    """Thresholds for verifying an asset on a task."""

    total: int = Field(default=1, ge=1)  # minimum finished assignments
    matching: int = Field(default=1, ge=1)  # minimum identical answers


def build_eligibility_predicate(criteria: AssignmentCriteria) -> All:
    """Compile assignment criteria into a predicate over asset records."""
    conditions: list[Predicate] = []
    for task_name, rule in criteria.submitted_data.items():
        if not rule:
            conditions.append(Missing(field_path("submitted_data", task_name)))
            continue
        for field_name, expected in rule.items():
            conditions.append(Term(field_path("submitted_data", task_name, field_name), expected))
    return all_of(*conditions)
