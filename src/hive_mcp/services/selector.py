from __future__ import annotations

import logging
import random

from hive_mcp.db.database import Database
from hive_mcp.db.predicates import Term, all_of, field_path, none_of
from hive_mcp.errors import NoEligibleWork
from hive_mcp.models.asset import Asset
from hive_mcp.models.criteria import build_eligibility_predicate
from hive_mcp.models.task import Task
from hive_mcp.models.user import User

logger = logging.getLogger(__name__)


class AssetSelector:
    """Picks an eligible asset for a task and user. Read-only.

    Every asset the user was ever given for the task is excluded, whatever
    the state of that assignment. Among the remaining matches one is chosen
    uniformly at random so no part of the pool is systematically favoured.
    """

    def __init__(self, db: Database, rng: random.Random | None = None):
        self.db = db
        self._rng = rng or random.Random()

    async def assigned_asset_ids(self, project: str, task_id: str, user_id: str) -> list[str]:
        buckets = await self.db.aggregate(
            "assignments",
            all_of(
                Term(field_path("project"), project),
                Term(field_path("task"), task_id),
                Term(field_path("user"), user_id),
            ),
            group_by=field_path("asset", "id"),
        )
        return [asset_id for asset_id in buckets if asset_id is not None]

    async def select(self, task: Task, user: User) -> Asset:
        excluded = await self.assigned_asset_ids(task.project, task.id, user.id)
        predicate = all_of(
            build_eligibility_predicate(task.assignment_criteria),
            Term(field_path("project"), task.project),
            none_of(field_path("id"), excluded),
        )
        result = await self.db.query("assets", predicate)
        if not result.records:
            logger.info(
                "No eligible assets for task %s / user %s (%d excluded)",
                task.id,
                user.id,
                len(excluded),
            )
            raise NoEligibleWork(task.id, user.id)

        chosen = self._rng.choice(result.records)
        logger.debug("Selected asset %s of %d candidates", chosen.get("id"), result.total)
        return Asset.model_validate(chosen)
