from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.consensus import ConsensusDetector
from hive_mcp.services.counts import CountsLedger
from hive_mcp.tools import guarded


def register(
    mcp: FastMCP,
    catalog: TaskCatalog,
    consensus: ConsensusDetector,
    ledger: CountsLedger,
) -> None:
    """Register project administration tools."""

    @mcp.tool()
    async def create_project(project_id: str, name: str = "", description: str = "") -> dict:
        """Create or update a project."""

        async def _run() -> dict:
            project = await catalog.create_project(
                {"id": project_id, "name": name, "description": description}
            )
            return {"project": project.model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def get_project(project_id: str) -> dict:
        """Show a project with its asset, task, user and assignment tallies."""

        async def _run() -> dict:
            return {"project": (await catalog.get_project(project_id)).model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def import_tasks(project: str, tasks: list[dict[str, Any]]) -> dict:
        """Create or replace tasks.

        Each task needs a ``name``; ``assignment_criteria`` and
        ``completion_criteria`` ({"total": n, "matching": m}) are optional.
        """

        async def _run() -> dict:
            saved = await catalog.import_tasks(project, tasks)
            return {"tasks": [task.model_dump(mode="json") for task in saved]}

        return await guarded(_run())

    @mcp.tool()
    async def import_assets(project: str, assets: list[dict[str, Any]]) -> dict:
        """Add assets to a project. Every asset needs a ``url``."""

        async def _run() -> dict:
            saved = await catalog.import_assets(project, assets)
            return {"assets": [asset.model_dump(mode="json") for asset in saved]}

        return await guarded(_run())

    @mcp.tool()
    async def enable_task(project: str, task: str) -> dict:
        """Make a task available for assignment."""

        async def _run() -> dict:
            return {"task": (await catalog.enable_task(project, task)).model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def disable_task(project: str, task: str) -> dict:
        """Stop handing out assignments for a task."""

        async def _run() -> dict:
            return {"task": (await catalog.disable_task(project, task)).model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def complete_task(project: str, task: str) -> dict:
        """Verify every asset whose finished answers meet the task's completion criteria."""

        async def _run() -> dict:
            result = await consensus.evaluate_task_completion(project, task)
            return {
                "assets": [asset.model_dump(mode="json") for asset in result.completed],
                "errors": [
                    {"asset_id": err.asset_id, **err.cause.to_dict()} for err in result.errors
                ],
            }

        return await guarded(_run())

    @mcp.tool()
    async def recount_asset(asset_id: str) -> dict:
        """Rebuild an asset's assignment counters from its assignment records."""

        async def _run() -> dict:
            return {"asset_id": asset_id, "counts": await ledger.compute_counts(asset_id)}

        return await guarded(_run())
