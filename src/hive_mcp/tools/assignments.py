from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from hive_mcp.services.assignments import AssignmentLifecycle
from hive_mcp.services.users import UserDirectory
from hive_mcp.tools import guarded


def register(mcp: FastMCP, lifecycle: AssignmentLifecycle, users: UserDirectory) -> None:
    """Register the tools a worker-facing app calls."""

    @mcp.tool()
    async def request_assignment(
        project: str,
        task: str,
        user_id: str,
        asset_id: str | None = None,
    ) -> dict:
        """Get the user's current assignment for a task, creating one if needed.

        Calling this again before submitting returns the same assignment.
        An ``error`` of ``no_eligible_work`` means nothing is available right
        now; try again later.

        Args:
            project: Project id
            task: Task name (e.g. "categorize")
            user_id: Opaque id of the current user; unknown ids create a user
            asset_id: Optional asset to assign instead of picking one
        """

        async def _run() -> dict:
            assignment = await lifecycle.allocate(project, task, user_id, asset_id)
            return {"assignment": assignment.model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def submit_assignment(
        project: str,
        assignment_id: str,
        state: str,
        submitted_data: dict[str, Any] | None = None,
    ) -> dict:
        """Finish or skip an assignment.

        Args:
            project: Project id
            assignment_id: Id returned by request_assignment
            state: "finished" or "skipped"
            submitted_data: The user's answer, required when finished
        """

        async def _run() -> dict:
            submission = {"id": assignment_id, "state": state, "submitted_data": submitted_data}
            assignment = await lifecycle.submit(project, submission)
            return {"assignment": assignment.model_dump(mode="json")}

        return await guarded(_run())

    @mcp.tool()
    async def toggle_favorite(project: str, user_id: str, asset_id: str) -> dict:
        """Favorite an asset for a user, or unfavorite it if already favorited."""

        async def _run() -> dict:
            result = await users.toggle_favorite(project, user_id, asset_id)
            return result.model_dump(mode="json")

        return await guarded(_run())

    @mcp.tool()
    async def list_favorites(project: str, user_id: str, offset: int = 0, limit: int = 10) -> dict:
        """List the assets a user has favorited."""

        async def _run() -> dict:
            favorites, total = await users.list_favorites(project, user_id, offset, limit)
            return {
                "favorites": [asset.model_dump(mode="json") for asset in favorites],
                "meta": {"total": total, "offset": offset, "limit": limit},
            }

        return await guarded(_run())
