from __future__ import annotations

import asyncio

import pytest

from hive_mcp.db.database import Database
from hive_mcp.errors import NoEligibleWork, NotFound, TaskUnavailable, ValidationError
from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import AssignmentState, assignment_id
from hive_mcp.models.task import Task
from hive_mcp.services.assignments import AssignmentLifecycle
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.users import UserDirectory


async def stored_counts(db: Database, asset_id: str) -> dict[str, int]:
    return (await db.get("assets", asset_id))["counts"]


@pytest.mark.asyncio
class TestAllocate:
    async def test_creates_assignment_and_user(
        self,
        lifecycle: AssignmentLifecycle,
        users: UserDirectory,
        db: Database,
        categorize: Task,
        assets: list[Asset],
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")

        assert assignment.state == AssignmentState.UNFINISHED
        assert assignment.id == assignment_id("news", categorize.id, assignment.asset.id, "alice")
        assert assignment.task == categorize.id
        assert (await stored_counts(db, assignment.asset.id))["unfinished"] == 1
        assert assignment.asset.counts["Assignments"] == 1

        user = await users.find_user("news", "alice")
        assert user.counts[categorize.id] == 0

    async def test_repeat_request_returns_same_assignment(
        self, lifecycle: AssignmentLifecycle, db: Database, assets: list[Asset]
    ) -> None:
        first = await lifecycle.allocate("news", "categorize", "alice")
        second = await lifecycle.allocate("news", "categorize", "alice")

        assert second.id == first.id
        assert await db.count("assignments") == 1
        assert (await stored_counts(db, first.asset.id))["Assignments"] == 1

    async def test_concurrent_requests_share_one_assignment(
        self, lifecycle: AssignmentLifecycle, db: Database, assets: list[Asset]
    ) -> None:
        results = await asyncio.gather(
            *(lifecycle.allocate("news", "categorize", "alice") for _ in range(5))
        )

        assert len({a.id for a in results}) == 1
        assert await db.count("assignments") == 1

    async def test_unavailable_task(
        self, lifecycle: AssignmentLifecycle, catalog: TaskCatalog, db: Database, assets: list[Asset]
    ) -> None:
        await catalog.disable_task("news", "categorize")
        with pytest.raises(TaskUnavailable):
            await lifecycle.allocate("news", "categorize", "alice")
        assert await db.count("assignments") == 0

    async def test_unknown_task(self, lifecycle: AssignmentLifecycle, categorize: Task) -> None:
        with pytest.raises(NotFound):
            await lifecycle.allocate("news", "transcribe", "alice")

    async def test_user_id_may_not_contain_separator(
        self, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        with pytest.raises(ValidationError):
            await lifecycle.allocate("news", "categorize", "ali::ce")

    async def test_exhausted_pool(
        self, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        for _ in assets:
            assignment = await lifecycle.allocate("news", "categorize", "alice")
            await lifecycle.submit("news", {"id": assignment.id, "state": "skipped"})

        with pytest.raises(NoEligibleWork):
            await lifecycle.allocate("news", "categorize", "alice")

    async def test_asset_hint(
        self, lifecycle: AssignmentLifecycle, db: Database, assets: list[Asset]
    ) -> None:
        target = assets[2]
        assignment = await lifecycle.allocate("news", "categorize", "alice", asset_id=target.id)
        assert assignment.asset.id == target.id

        await lifecycle.submit("news", {"id": assignment.id, "state": "skipped"})
        again = await lifecycle.allocate("news", "categorize", "alice", asset_id=target.id)
        assert again.id == assignment.id
        assert again.state == AssignmentState.SKIPPED
        assert (await stored_counts(db, target.id))["Assignments"] == 1

    async def test_asset_hint_from_other_project(
        self, lifecycle: AssignmentLifecycle, catalog: TaskCatalog, assets: list[Asset]
    ) -> None:
        [foreign] = await catalog.import_assets("archive", [{"url": "http://example.com/x.jpg"}])
        with pytest.raises(NotFound):
            await lifecycle.allocate("news", "categorize", "alice", asset_id=foreign.id)


@pytest.mark.asyncio
class TestSubmit:
    async def test_finish_updates_counts_and_user(
        self,
        lifecycle: AssignmentLifecycle,
        users: UserDirectory,
        db: Database,
        categorize: Task,
        assets: list[Asset],
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        done = await lifecycle.submit(
            "news",
            {"id": assignment.id, "state": "finished", "submitted_data": {"category": "usable"}},
        )

        assert done.state == AssignmentState.FINISHED
        assert done.submitted_data == {"category": "usable"}
        asset_counts = await stored_counts(db, assignment.asset.id)
        assert asset_counts["finished"] == 1
        assert asset_counts["unfinished"] == 0
        assert asset_counts["Assignments"] == 1
        assert done.asset.counts == asset_counts

        user = await users.find_user("news", "alice")
        assert user.counts["Assignments"] == 1
        assert user.counts[categorize.id] == 1

    async def test_skip_keeps_user_counts(
        self, lifecycle: AssignmentLifecycle, users: UserDirectory, db: Database, assets: list[Asset]
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        skipped = await lifecycle.submit("news", {"id": assignment.id, "state": "skipped"})

        assert skipped.state == AssignmentState.SKIPPED
        assert skipped.submitted_data is None
        assert (await stored_counts(db, assignment.asset.id))["skipped"] == 1
        assert (await users.find_user("news", "alice")).counts["Assignments"] == 0

    async def test_finished_requires_data(
        self, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        with pytest.raises(ValidationError):
            await lifecycle.submit("news", {"id": assignment.id, "state": "finished"})

    async def test_workers_cannot_verify(
        self, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        with pytest.raises(ValidationError):
            await lifecycle.submit(
                "news", {"id": assignment.id, "state": "verified", "submitted_data": {}}
            )

    async def test_unknown_assignment(self, lifecycle: AssignmentLifecycle, assets: list[Asset]) -> None:
        with pytest.raises(NotFound):
            await lifecycle.submit("news", {"id": "news::nope::x::alice", "state": "skipped"})

    async def test_replayed_submission_is_idempotent(
        self, lifecycle: AssignmentLifecycle, users: UserDirectory, db: Database, assets: list[Asset]
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        payload = {"id": assignment.id, "state": "finished", "submitted_data": {"category": "x"}}
        await lifecycle.submit("news", payload)
        replay = await lifecycle.submit("news", payload)

        assert replay.state == AssignmentState.FINISHED
        assert (await stored_counts(db, assignment.asset.id))["finished"] == 1
        assert (await users.find_user("news", "alice")).counts["Assignments"] == 1

    async def test_changing_a_terminal_answer_is_refused(
        self, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        assignment = await lifecycle.allocate("news", "categorize", "alice")
        await lifecycle.submit("news", {"id": assignment.id, "state": "skipped"})
        with pytest.raises(ValidationError):
            await lifecycle.submit(
                "news",
                {"id": assignment.id, "state": "finished", "submitted_data": {"category": "x"}},
            )

    async def test_new_task_counter_filled_for_old_users(
        self,
        lifecycle: AssignmentLifecycle,
        users: UserDirectory,
        catalog: TaskCatalog,
        assets: list[Asset],
    ) -> None:
        await users.find_or_create_user("news", "alice")
        [find] = await catalog.import_tasks("news", [{"name": "find", "current_state": "available"}])

        assignment = await lifecycle.allocate("news", "find", "alice")
        await lifecycle.submit(
            "news", {"id": assignment.id, "state": "finished", "submitted_data": {"ads": 2}}
        )

        user = await users.find_user("news", "alice")
        assert user.counts[find.id] == 1
        assert user.counts["news-categorize"] == 0

    async def test_counts_stay_consistent_across_workers(
        self, lifecycle: AssignmentLifecycle, db: Database, assets: list[Asset]
    ) -> None:
        async def work(user_id: str) -> None:
            assignment = await lifecycle.allocate("news", "categorize", user_id)
            await lifecycle.submit(
                "news",
                {"id": assignment.id, "state": "finished", "submitted_data": {"category": "x"}},
            )

        await asyncio.gather(*(work(f"worker-{n}") for n in range(6)))

        total = 0
        for asset in assets:
            asset_counts = await stored_counts(db, asset.id)
            assert asset_counts["Assignments"] == (
                asset_counts["finished"] + asset_counts["skipped"] + asset_counts["unfinished"]
            )
            total += asset_counts["finished"]
        assert total == 6
