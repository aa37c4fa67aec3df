from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, TypeVar

from hive_mcp.db.database import Database
from hive_mcp.db.predicates import All, AnyOf, Term, all_of, field_path
from hive_mcp.errors import CompletionSweepError, HiveError, InvariantViolation
from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import Assignment, AssignmentState
from hive_mcp.models.task import Task
from hive_mcp.services import counts
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.locks import KeyedLocks
from hive_mcp.services.users import UserDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Finished answers still count towards an agreement once it has been verified.
COUNTED_STATES = (AssignmentState.FINISHED.value, AssignmentState.VERIFIED.value)


def canonical_answer(value: Any) -> str:
    """Serialise a JSON answer so structurally equal answers give equal text.

    Keys are sorted; ``true``, ``1`` and ``1.0`` stay distinct.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


@dataclass
class Partition(Generic[T]):
    """Items whose answers are structurally equal to ``value``."""

    value: Any
    members: list[T] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.members)

    @property
    def key(self) -> str:
        return canonical_answer(self.value)


def partition_by_equality(
    items: Iterable[T], answer: Callable[[T], Any] = lambda item: item
) -> list[Partition[T]]:
    """Group items by structural equality of ``answer(item)``, in first-seen order."""
    partitions: dict[str, Partition[T]] = {}
    for item in items:
        value = answer(item)
        key = canonical_answer(value)
        if key not in partitions:
            partitions[key] = Partition(value=value)
        partitions[key].members.append(item)
    return list(partitions.values())


def winning_partition(
    partitions: list[Partition[T]], matching: int, incumbent: Any = None
) -> Partition[T] | None:
    """The largest partition reaching ``matching``; the earliest one wins ties.

    When ``incumbent`` (an answer already agreed) reaches ``matching`` it keeps
    winning until another partition strictly outnumbers it.
    """
    best: Partition[T] | None = None
    for partition in partitions:
        if len(partition) >= matching and (best is None or len(partition) > len(best)):
            best = partition
    if best is None or incumbent is None:
        return best
    incumbent_key = canonical_answer(incumbent)
    for partition in partitions:
        if partition.key == incumbent_key and len(partition) >= len(best):
            return partition
    return best


@dataclass
class SweepResult:
    completed: list[Asset] = field(default_factory=list)
    errors: list[CompletionSweepError] = field(default_factory=list)


class ConsensusDetector:
    """Promotes assets to verified once enough finished answers agree.

    Sweeps for the same task are serialised; different tasks may sweep
    concurrently. A failure on one asset is recorded and the sweep moves on.
    """

    def __init__(
        self,
        db: Database,
        catalog: TaskCatalog,
        users: UserDirectory,
        locks: KeyedLocks,
    ):
        self.db = db
        self.catalog = catalog
        self.users = users
        self.locks = locks

    async def evaluate_task_completion(self, project: str, task_name: str) -> SweepResult:
        task = await self.catalog.find_task(project, task_name)
        criteria = task.completion_criteria
        result = SweepResult()

        async with self.locks.hold("sweep", project, task.id):
            await self.db.refresh()
            buckets = await self.db.aggregate(
                "assignments",
                self._answers_for(task),
                group_by=field_path("asset", "id"),
                nested_group_by=field_path("state"),
                min_count=criteria.total,
            )
            # assets with no finished answers were settled by an earlier sweep
            pending = [
                asset_id
                for asset_id, bucket in buckets.items()
                if bucket.groups.get(AssignmentState.FINISHED.value, 0) > 0
            ]
            logger.info(
                "Sweeping %s: %d assets with at least %d answers and new ones to settle",
                task.id,
                len(pending),
                criteria.total,
            )
            project_tasks = await self.catalog.find_tasks(project)

            for asset_id in pending:
                try:
                    asset = await self._complete_asset(task, asset_id, project_tasks)
                except HiveError as exc:
                    logger.error("Failed completing asset %s for %s: %s", asset_id, task.id, exc)
                    result.errors.append(CompletionSweepError(asset_id, exc))
                    continue
                if asset is not None:
                    result.completed.append(asset)

            await self.db.refresh()

        logger.info(
            "Sweep of %s verified %d assets (%d errors)",
            task.id,
            len(result.completed),
            len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _answers_for(self, task: Task, asset_id: str | None = None) -> All:
        return all_of(
            Term(field_path("project"), task.project),
            Term(field_path("task"), task.id),
            AnyOf(field_path("state"), COUNTED_STATES),
            Term(field_path("asset", "id"), asset_id) if asset_id else None,
        )

    async def _complete_asset(
        self, task: Task, asset_id: str, project_tasks: list[Task]
    ) -> Asset | None:
        """Settle one asset; returns it only when its agreed answer changed."""
        criteria = task.completion_criteria
        found = await self.db.query("assignments", self._answers_for(task, asset_id))
        answers = [Assignment.model_validate(r) for r in found.records]
        if len(answers) < criteria.total:
            return None

        repeaters = [user for user, n in Counter(a.user for a in answers).items() if n > 1]
        if repeaters:
            logger.warning("Asset %s has several answers from %s", asset_id, repeaters)

        # only sweeps of this task write this answer, and they are serialised
        stored = Asset.model_validate(await self.db.get("assets", asset_id))
        current = stored.submitted_data.get(task.name)

        partitions = partition_by_equality(answers, lambda a: a.submitted_data)
        winner = winning_partition(partitions, criteria.matching, incumbent=current)
        if winner is None:
            logger.debug(
                "Asset %s: no answer reached %d of %d", asset_id, criteria.matching, len(answers)
            )
            return None
        if len(winner) > len(answers):
            raise InvariantViolation(
                f"Asset {asset_id}: agreeing partition of {len(winner)} exceeds "
                f"{len(answers)} answers"
            )

        changed = current is None or canonical_answer(current) != winner.key
        newcomers = [a for a in winner.members if a.state == AssignmentState.FINISHED]
        if not changed and not newcomers:
            return None

        async with self.locks.hold("asset", asset_id):
            asset = Asset.model_validate(await self.db.get("assets", asset_id))
            if changed:
                asset.submitted_data[task.name] = winner.value
                asset.verified = all(
                    asset.submitted_data.get(t.name) is not None for t in project_tasks
                )
                await self.db.put("assets", asset_id, asset.model_dump(mode="json"))
        if changed:
            logger.info(
                "Asset %s agreed for %s by %d users%s",
                asset_id,
                task.name,
                len(winner),
                " and is now verified" if asset.verified else "",
            )
        else:
            logger.debug("Asset %s: %d more users agree on %s", asset_id, len(newcomers), task.name)

        for assignment in newcomers:
            assignment.state = AssignmentState.VERIFIED
            assignment.asset = asset
            await self.db.put("assignments", assignment.id, assignment.model_dump(mode="json"))
            await self._credit_verifier(task.project, assignment.user, asset_id)

        return asset if changed else None

    async def _credit_verifier(self, project: str, user_id: str, asset_id: str) -> None:
        async with self.locks.hold("user", project, user_id):
            user = await self.users.find_user(project, user_id)
            if counts.record_verified_asset(user, asset_id):
                await self.db.put("users", user.id, user.model_dump(mode="json"))
