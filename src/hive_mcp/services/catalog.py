from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import BaseModel

from hive_mcp.db.database import Database, generate_id
from hive_mcp.db.predicates import Exists, Predicate, Term, all_of, field_path
from hive_mcp.errors import NotFound, ValidationError
from hive_mcp.models.asset import Asset, new_asset_counts
from hive_mcp.models.assignment import Assignment, AssignmentState
from hive_mcp.models.parsing import parse_model
from hive_mcp.models.project import Project, ProjectSummary
from hive_mcp.models.task import Task, TaskState, task_id

logger = logging.getLogger(__name__)


def _payload(item: Any) -> dict[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump(mode="json")
    if not isinstance(item, dict):
        raise ValidationError(f"Expected an object, got {type(item).__name__}")
    return dict(item)


class TaskCatalog:
    """Projects, tasks and assets: the records allocation works from."""

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, payload: Project | dict[str, Any]) -> Project:
        project = parse_model(Project, payload)
        await self.db.put("projects", project.id, project.model_dump(mode="json"))
        await self.db.refresh()
        logger.info("Saved project %s", project.id)
        return project

    async def get_project(self, project_id: str) -> ProjectSummary:
        """Look up a project and tally its assets, tasks, users and assignments."""
        project = Project.model_validate(await self.db.get("projects", project_id))
        in_project = Term(field_path("project"), project_id)

        summary = ProjectSummary(**project.model_dump())
        summary.asset_count = await self.db.count("assets", in_project)
        summary.task_count = await self.db.count("tasks", in_project)
        summary.user_count = await self.db.count("users", in_project)

        buckets = await self.db.aggregate(
            "assignments",
            in_project,
            group_by=field_path("task"),
            nested_group_by=field_path("state"),
        )
        by_state: dict[str, int] = {}
        for bucket in buckets.values():
            for state, n in bucket.groups.items():
                by_state[state] = by_state.get(state, 0) + n
        summary.assignment_count = {state.title(): n for state, n in by_state.items()}
        summary.assignment_count["Total"] = sum(by_state.values())
        summary.assignment_count_by_task = {
            task: dict(bucket.groups) for task, bucket in buckets.items()
        }
        return summary

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def import_tasks(self, project: str, payloads: Iterable[Any]) -> list[Task]:
        """Create or replace tasks in ``project``.

        Criteria are validated here, before anything is stored, so a malformed
        rule never reaches asset selection.
        """
        tasks: list[Task] = []
        for item in payloads:
            data = _payload(item)
            if not data.get("name"):
                raise ValidationError("Sorry, all tasks must specify a name.")
            data["project"] = project
            data.pop("id", None)
            tasks.append(parse_model(Task, data))

        for task in tasks:
            await self.db.put("tasks", task.id, task.model_dump(mode="json"))
            logger.info("Saved task %s (%s)", task.id, task.current_state.value)
        await self.db.refresh()
        return tasks

    async def find_task(self, project: str, name: str) -> Task:
        data = await self.db.get("tasks", task_id(project, name))
        return Task.model_validate(data)

    async def find_tasks(self, project: str) -> list[Task]:
        result = await self.db.query(
            "tasks",
            Term(field_path("project"), project),
            sort=(field_path("name"), "asc"),
        )
        return [Task.model_validate(record) for record in result.records]

    async def set_task_state(self, project: str, name: str, state: TaskState) -> Task:
        task = await self.find_task(project, name)
        task.current_state = state
        await self.db.put("tasks", task.id, task.model_dump(mode="json"))
        await self.db.refresh()
        logger.info("Task %s is now %s", task.id, state.value)
        return task

    async def enable_task(self, project: str, name: str) -> Task:
        return await self.set_task_state(project, name, TaskState.AVAILABLE)

    async def disable_task(self, project: str, name: str) -> Task:
        return await self.set_task_state(project, name, TaskState.WAITING)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def import_assets(self, project: str, payloads: Iterable[Any]) -> list[Asset]:
        """Store new assets with empty answers for every task and zeroed counts."""
        task_names = [task.name for task in await self.find_tasks(project)]

        assets: list[Asset] = []
        for item in payloads:
            data = _payload(item)
            if not data.get("url"):
                raise ValidationError("Sorry, all assets must specify a url.")
            data.update(
                id=None,
                project=project,
                submitted_data={name: None for name in task_names},
                verified=False,
                counts=new_asset_counts(),
            )
            assets.append(parse_model(Asset, data))

        for asset in assets:
            asset.id = generate_id()
            await self.db.put("assets", asset.id, asset.model_dump(mode="json"))
        await self.db.refresh()
        logger.info("Imported %d assets into %s", len(assets), project)
        return assets

    async def find_asset(self, project: str, asset_id: str) -> Asset:
        asset = Asset.model_validate(await self.db.get("assets", asset_id))
        if asset.project != project:
            raise NotFound("asset", asset_id)
        return asset

    async def find_assets(
        self,
        project: str,
        offset: int = 0,
        limit: int | None = 10,
        sort_by: str = "name",
        sort_dir: str = "asc",
    ) -> tuple[list[Asset], int]:
        return await self._assets(Term(field_path("project"), project), offset, limit, sort_by, sort_dir)

    async def find_assets_with_data(
        self,
        project: str,
        task_name: str | None = None,
        offset: int = 0,
        limit: int | None = 10,
    ) -> tuple[list[Asset], int]:
        """Assets holding an agreed answer for ``task_name``, or for every task if omitted."""
        if task_name is not None:
            names = [task_name]
        else:
            names = [task.name for task in await self.find_tasks(project)]
        predicate = all_of(
            Term(field_path("project"), project),
            *(Exists(field_path("submitted_data", name)) for name in names),
        )
        return await self._assets(predicate, offset, limit, "name", "asc")

    async def _assets(
        self, predicate: Predicate, offset: int, limit: int | None, sort_by: str, sort_dir: str
    ) -> tuple[list[Asset], int]:
        result = await self.db.query(
            "assets", predicate, sort=(field_path(sort_by), sort_dir), offset=offset, limit=limit
        )
        return [Asset.model_validate(r) for r in result.records], result.total

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def find_assignments(
        self,
        project: str,
        task_name: str | None = None,
        user_id: str | None = None,
        state: AssignmentState | None = None,
        offset: int = 0,
        limit: int | None = 10,
    ) -> tuple[list[Assignment], int]:
        predicate = all_of(
            Term(field_path("project"), project),
            Term(field_path("task"), task_id(project, task_name)) if task_name else None,
            Term(field_path("user"), user_id) if user_id else None,
            Term(field_path("state"), state.value) if state else None,
        )
        result = await self.db.query("assignments", predicate, offset=offset, limit=limit)
        return [Assignment.model_validate(r) for r in result.records], result.total
