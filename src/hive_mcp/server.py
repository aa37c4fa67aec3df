from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from hive_mcp.db.database import Database
from hive_mcp.services.assignments import AssignmentLifecycle
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.consensus import ConsensusDetector
from hive_mcp.services.counts import CountsLedger
from hive_mcp.services.locks import KeyedLocks
from hive_mcp.services.selector import AssetSelector
from hive_mcp.services.users import UserDirectory
from hive_mcp.tools import admin as admin_tools
from hive_mcp.tools import assignments as assignment_tools
from hive_mcp.utils.config import get_config
from hive_mcp.utils.logger import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class HiveServices:
    db: Database
    locks: KeyedLocks
    catalog: TaskCatalog
    users: UserDirectory
    selector: AssetSelector
    lifecycle: AssignmentLifecycle
    consensus: ConsensusDetector
    ledger: CountsLedger


def build_services(db: Database, selection_seed: int | None = None) -> HiveServices:
    """Wire the engine around an initialised database.

    All services share one ``KeyedLocks`` so exclusive sections hold across
    allocation, submission and sweeps.
    """
    locks = KeyedLocks()
    catalog = TaskCatalog(db)
    users = UserDirectory(db, catalog, locks)
    selector = AssetSelector(db, rng=random.Random(selection_seed))
    return HiveServices(
        db=db,
        locks=locks,
        catalog=catalog,
        users=users,
        selector=selector,
        lifecycle=AssignmentLifecycle(db, catalog, users, selector, locks),
        consensus=ConsensusDetector(db, catalog, users, locks),
        ledger=CountsLedger(db, locks),
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle for Hive."""
    config = get_config()

    # --- Database ---
    db = Database(config.db_path, timeout=config.store_timeout_seconds)
    await db.initialize()

    # --- Services ---
    services = build_services(db, config.selection_seed)

    # --- Register MCP tools ---
    assignment_tools.register(server, services.lifecycle, services.users)
    admin_tools.register(server, services.catalog, services.consensus, services.ledger)

    # --- Register MCP resource ---
    @server.resource("hive://stats")
    async def get_stats() -> str:
        return (
            "Hive Status:\n"
            f"- Projects: {await db.count('projects')}\n"
            f"- Assets: {await db.count('assets')}\n"
            f"- Users: {await db.count('users')}\n"
            f"- Assignments: {await db.count('assignments')}\n"
            f"- Busy Sections: {len(services.locks)}\n"
        )

    logger.info("Hive MCP Server ready (store at %s)", config.db_path)

    try:
        yield
    finally:
        await db.close()
        logger.info("Hive MCP Server stopped")


def create_server() -> FastMCP:
    """Build and return the configured FastMCP server."""
    config = get_config()
    setup_logging(config.log_level)

    server = FastMCP("Hive", lifespan=lifespan)
    return server


# Module-level instance used by the CLI and ``python -m``
mcp = create_server()

if __name__ == "__main__":
    mcp.run()
