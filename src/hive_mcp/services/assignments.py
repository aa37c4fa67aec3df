from __future__ import annotations

import logging
from typing import Any

from hive_mcp.db.database import Database
from hive_mcp.db.predicates import Term, all_of, field_path
from hive_mcp.errors import NotFound, TaskUnavailable, ValidationError
from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import (
    SUBMITTABLE_STATES,
    Assignment,
    AssignmentState,
    AssignmentSubmission,
    assignment_id,
    check_identifier,
)
from hive_mcp.models.parsing import parse_model
from hive_mcp.models.task import Task
from hive_mcp.models.user import User
from hive_mcp.services import counts
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.locks import KeyedLocks
from hive_mcp.services.selector import AssetSelector
from hive_mcp.services.users import UserDirectory

logger = logging.getLogger(__name__)


class AssignmentLifecycle:
    """Creates assignments and moves them through their states.

    ``unfinished -> finished | skipped``. Only the consensus sweep moves
    ``finished -> verified``.

    Allocation and submission for one (project, task, user) run inside the
    same exclusive section, so two rapid requests from one worker can never
    both see "no unfinished assignment" and walk away with different assets.
    Counter updates are written before the assignment record that implies
    them.
    """

    def __init__(
        self,
        db: Database,
        catalog: TaskCatalog,
        users: UserDirectory,
        selector: AssetSelector,
        locks: KeyedLocks,
    ):
        self.db = db
        self.catalog = catalog
        self.users = users
        self.selector = selector
        self.locks = locks

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def allocate(
        self,
        project: str,
        task_name: str,
        user_id: str,
        asset_id: str | None = None,
    ) -> Assignment:
        """Return the user's outstanding assignment for the task, or create one.

        With ``asset_id`` the new assignment targets that asset instead of a
        selected one.
        """
        check_identifier(user_id)
        task = await self.catalog.find_task(project, task_name)
        if not task.is_available:
            logger.warning("Refused assignment on %s: task is %s", task.id, task.current_state.value)
            raise TaskUnavailable(task.id, task.current_state.value)

        async with self.locks.hold("assignment", project, task.id, user_id):
            user = await self.users.find_or_create_user(project, user_id)

            outstanding = await self.find_unfinished(project, task.id, user.id)
            if outstanding is not None:
                logger.debug("Returning outstanding assignment %s", outstanding.id)
                return outstanding

            if asset_id is not None:
                asset = await self.catalog.find_asset(project, asset_id)
                existing = await self._get_assignment(
                    assignment_id(project, task.id, asset.id, user.id)
                )
                if existing is not None:
                    return existing
            else:
                asset = await self.selector.select(task, user)

            return await self._create(project, task, user, asset)

    async def submit(
        self, project: str, payload: AssignmentSubmission | dict[str, Any]
    ) -> Assignment:
        """Record a worker finishing or skipping an assignment.

        Re-sending a submission that was already applied returns the stored
        assignment without touching any counters.
        """
        submission = parse_model(AssignmentSubmission, payload)
        if submission.state not in SUBMITTABLE_STATES:
            raise ValidationError(
                f"Assignments can only be submitted as finished or skipped, not {submission.state.value}"
            )
        if submission.state == AssignmentState.FINISHED and submission.submitted_data is None:
            raise ValidationError("Finished assignments must include submitted_data")

        stored = await self._get_assignment(submission.id)
        if stored is None or stored.project != project:
            raise NotFound("assignment", submission.id)

        async with self.locks.hold("assignment", project, stored.task, stored.user):
            assignment = Assignment.model_validate(await self.db.get("assignments", stored.id))

            if assignment.state != AssignmentState.UNFINISHED:
                if self._is_replay(assignment, submission):
                    return assignment
                raise ValidationError(
                    f"Assignment {assignment.id} is already {assignment.state.value}"
                )

            async with self.locks.hold("asset", assignment.asset.id):
                asset = Asset.model_validate(await self.db.get("assets", assignment.asset.id))
                counts.record_transition(asset, submission.state)
                await self.db.put("assets", asset.id, asset.model_dump(mode="json"))

            assignment.state = submission.state
            if submission.state == AssignmentState.FINISHED:
                assignment.submitted_data = submission.submitted_data
            assignment.asset = asset
            await self.db.put("assignments", assignment.id, assignment.model_dump(mode="json"))
            await self.db.refresh()

            if submission.state == AssignmentState.FINISHED:
                await self._credit_user(project, assignment)

        logger.info("Assignment %s %s", assignment.id, assignment.state.value)
        return assignment

    async def find_unfinished(self, project: str, task_id: str, user_id: str) -> Assignment | None:
        result = await self.db.query(
            "assignments",
            all_of(
                Term(field_path("project"), project),
                Term(field_path("task"), task_id),
                Term(field_path("user"), user_id),
                Term(field_path("state"), AssignmentState.UNFINISHED.value),
            ),
            limit=1,
        )
        if not result.records:
            return None
        if result.total > 1:
            logger.warning(
                "User %s holds %d unfinished assignments for %s", user_id, result.total, task_id
            )
        return Assignment.model_validate(result.records[0])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _create(self, project: str, task: Task, user: User, asset: Asset) -> Assignment:
        assert asset.id is not None
        new_id = assignment_id(project, task.id, asset.id, user.id)

        async with self.locks.hold("asset", asset.id):
            # the selected copy may be stale; count against the current record
            asset = Asset.model_validate(await self.db.get("assets", asset.id))
            counts.record_allocation(asset)
            await self.db.put("assets", asset.id, asset.model_dump(mode="json"))

        assignment = Assignment(
            id=new_id,
            user=user.id,
            project=project,
            task=task.id,
            asset=asset,
            state=AssignmentState.UNFINISHED,
        )
        await self.db.put("assignments", assignment.id, assignment.model_dump(mode="json"))
        await self.db.refresh()
        logger.info("Assigned asset %s to user %s for %s", asset.id, user.id, task.id)
        return assignment

    async def _credit_user(self, project: str, assignment: Assignment) -> None:
        task_ids = [task.id for task in await self.catalog.find_tasks(project)]
        async with self.locks.hold("user", project, assignment.user):
            user = await self.users.find_user(project, assignment.user)
            counts.record_finished(user, assignment.task, task_ids)
            await self.db.put("users", user.id, user.model_dump(mode="json"))
            await self.db.refresh()

    async def _get_assignment(self, record_id: str) -> Assignment | None:
        try:
            return Assignment.model_validate(await self.db.get("assignments", record_id))
        except NotFound:
            return None

    @staticmethod
    def _is_replay(assignment: Assignment, submission: AssignmentSubmission) -> bool:
        if submission.state == AssignmentState.SKIPPED:
            return assignment.state == AssignmentState.SKIPPED
        return (
            assignment.state in (AssignmentState.FINISHED, AssignmentState.VERIFIED)
            and assignment.submitted_data == submission.submitted_data
        )
