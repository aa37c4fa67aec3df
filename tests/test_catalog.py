from __future__ import annotations

import pytest

from hive_mcp.errors import NotFound, ValidationError
from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import AssignmentState
from hive_mcp.models.task import Task, TaskState
from hive_mcp.services.assignments import AssignmentLifecycle
from hive_mcp.services.catalog import TaskCatalog


@pytest.mark.asyncio
class TestProjects:
    async def test_summary(
        self,
        catalog: TaskCatalog,
        lifecycle: AssignmentLifecycle,
        categorize: Task,
        assets: list[Asset],
    ) -> None:
        first = await lifecycle.allocate("news", "categorize", "alice")
        await lifecycle.submit("news", {"id": first.id, "state": "skipped"})
        await lifecycle.allocate("news", "categorize", "alice")
        await lifecycle.allocate("news", "categorize", "bob")

        summary = await catalog.get_project("news")

        assert summary.name == "Newspaper Archive"
        assert (summary.asset_count, summary.task_count, summary.user_count) == (3, 1, 2)
        assert summary.assignment_count == {"Skipped": 1, "Unfinished": 2, "Total": 3}
        assert summary.assignment_count_by_task == {
            categorize.id: {"skipped": 1, "unfinished": 2}
        }

    async def test_unknown_project(self, catalog: TaskCatalog) -> None:
        with pytest.raises(NotFound):
            await catalog.get_project("missing")


@pytest.mark.asyncio
class TestTasks:
    async def test_import_replaces_by_name(self, catalog: TaskCatalog, categorize: Task) -> None:
        [replaced] = await catalog.import_tasks(
            "news", [{"name": "Categorize", "description": "second pass"}]
        )
        assert replaced.id == categorize.id

        tasks = await catalog.find_tasks("news")
        assert [t.description for t in tasks] == ["second pass"]
        assert tasks[0].current_state == TaskState.WAITING

    async def test_import_requires_name(self, catalog: TaskCatalog) -> None:
        with pytest.raises(ValidationError):
            await catalog.import_tasks("news", [{"description": "nameless"}])

    async def test_bad_criteria_rejected_before_storing(self, catalog: TaskCatalog) -> None:
        with pytest.raises(ValidationError):
            await catalog.import_tasks(
                "news",
                [
                    {"name": "find"},
                    {"name": "transcribe", "assignment_criteria": {"submitted_data": {"find": 1}}},
                ],
            )
        assert await catalog.find_tasks("news") == []

    async def test_enable_disable(self, catalog: TaskCatalog, categorize: Task) -> None:
        assert (await catalog.disable_task("news", "categorize")).current_state == TaskState.WAITING
        assert (await catalog.enable_task("news", "categorize")).is_available

    async def test_unknown_task(self, catalog: TaskCatalog) -> None:
        with pytest.raises(NotFound):
            await catalog.enable_task("news", "missing")


@pytest.mark.asyncio
class TestAssets:
    async def test_import_initialises_answers_and_counts(
        self, assets: list[Asset], catalog: TaskCatalog
    ) -> None:
        stored = await catalog.find_asset("news", assets[0].id)
        assert stored.submitted_data == {"categorize": None}
        assert stored.verified is False
        assert stored.counts == {
            "Favorites": 0,
            "Assignments": 0,
            "finished": 0,
            "skipped": 0,
            "unfinished": 0,
        }

    async def test_import_writes_each_asset_once(
        self, catalog: TaskCatalog, categorize: Task, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        writes: list[tuple[str, str | None, dict]] = []
        put = catalog.db.put

        async def recording_put(kind, record_id, body):
            writes.append((kind, record_id, body))
            return await put(kind, record_id, body)

        monkeypatch.setattr(catalog.db, "put", recording_put)
        imported = await catalog.import_assets(
            "news", [{"url": "http://a.example"}, {"url": "http://b.example"}]
        )

        assert [(kind, record_id) for kind, record_id, _ in writes] == [
            ("assets", asset.id) for asset in imported
        ]
        assert all(record_id is not None for _, record_id, _ in writes)
        assert all(body["id"] == record_id for _, record_id, body in writes)

    async def test_import_requires_url(self, catalog: TaskCatalog, categorize: Task) -> None:
        with pytest.raises(ValidationError):
            await catalog.import_assets("news", [{"name": "no url"}])

    async def test_assets_are_scoped_to_project(
        self, catalog: TaskCatalog, assets: list[Asset]
    ) -> None:
        with pytest.raises(NotFound):
            await catalog.find_asset("archive", assets[0].id)

    async def test_find_assets_pages(self, catalog: TaskCatalog, assets: list[Asset]) -> None:
        page, total = await catalog.find_assets("news", offset=1, limit=1)
        assert total == 3
        assert [a.name for a in page] == ["page-2"]

    async def test_find_assets_with_data(
        self, catalog: TaskCatalog, assets: list[Asset]
    ) -> None:
        answered = assets[1]
        answered.submitted_data["categorize"] = {}
        await catalog.db.put("assets", answered.id, answered.model_dump(mode="json"))

        found, total = await catalog.find_assets_with_data("news", "categorize")
        assert total == 1
        assert found[0].id == answered.id

    async def test_find_assignments(
        self, catalog: TaskCatalog, lifecycle: AssignmentLifecycle, assets: list[Asset]
    ) -> None:
        await lifecycle.allocate("news", "categorize", "alice")
        await lifecycle.allocate("news", "categorize", "bob")

        found, total = await catalog.find_assignments("news", "categorize", user_id="bob")
        assert total == 1
        assert found[0].user == "bob"

        _, unfinished = await catalog.find_assignments(
            "news", state=AssignmentState.UNFINISHED
        )
        assert unfinished == 2
