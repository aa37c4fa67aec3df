from __future__ import annotations

from pathlib import Path

import pytest

from hive_mcp.db.database import Database
from hive_mcp.models.asset import Asset
from hive_mcp.models.task import Task
from hive_mcp.server import HiveServices, build_services
from hive_mcp.services.assignments import AssignmentLifecycle
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.consensus import ConsensusDetector
from hive_mcp.services.counts import CountsLedger
from hive_mcp.services.locks import KeyedLocks
from hive_mcp.services.selector import AssetSelector
from hive_mcp.services.users import UserDirectory

PROJECT = "news"


@pytest.fixture
async def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "test.db")
    await database.initialize()
    yield database  # type: ignore[misc]
    await database.close()


@pytest.fixture
def services(db: Database) -> HiveServices:
    return build_services(db, selection_seed=7)


@pytest.fixture
def locks(services: HiveServices) -> KeyedLocks:
    return services.locks


@pytest.fixture
def catalog(services: HiveServices) -> TaskCatalog:
    return services.catalog


@pytest.fixture
def users(services: HiveServices) -> UserDirectory:
    return services.users


@pytest.fixture
def selector(services: HiveServices) -> AssetSelector:
    return services.selector


@pytest.fixture
def lifecycle(services: HiveServices) -> AssignmentLifecycle:
    return services.lifecycle


@pytest.fixture
def consensus(services: HiveServices) -> ConsensusDetector:
    return services.consensus


@pytest.fixture
def ledger(services: HiveServices) -> CountsLedger:
    return services.ledger


@pytest.fixture
async def categorize(catalog: TaskCatalog) -> Task:
    """An available task that wants every asset categorized once by two agreeing users."""
    await catalog.create_project({"id": PROJECT, "name": "Newspaper Archive"})
    [task] = await catalog.import_tasks(
        PROJECT,
        [
            {
                "name": "categorize",
                "current_state": "available",
                "assignment_criteria": {"submitted_data": {"categorize": {}}},
                "completion_criteria": {"total": 2, "matching": 2},
            }
        ],
    )
    return task


@pytest.fixture
async def assets(catalog: TaskCatalog, categorize: Task) -> list[Asset]:
    return await catalog.import_assets(
        PROJECT,
        [
            {"url": "http://example.com/page-1.jpg", "name": "page-1"},
            {"url": "http://example.com/page-2.jpg", "name": "page-2"},
            {"url": "http://example.com/page-3.jpg", "name": "page-3"},
        ],
    )
