#!/usr/bin/env python3
"""Demo: a small crowd categorizing newspaper pages until they agree.

Four workers share one Hive store. Each asks for work, answers, and asks
again; a completion sweep then verifies every page that reached agreement.
"""

import asyncio
import random
import sys
from pathlib import Path

# Add src to path so we can import without installing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hive_mcp.db.database import Database
from hive_mcp.errors import NoEligibleWork
from hive_mcp.server import HiveServices, build_services

DB_PATH = Path(__file__).parent.parent / "data" / "demo.db"
PAGES = 5


async def simulate_worker(name: str, hive: HiveServices, honesty: float) -> int:
    """Answer categorize assignments until the pool runs dry."""
    answered = 0
    while True:
        try:
            assignment = await hive.lifecycle.allocate("demo", "categorize", name)
        except NoEligibleWork:
            print(f"[{name}] nothing left after {answered} answers")
            return answered

        category = "usable" if random.random() < honesty else "unusable"
        await hive.lifecycle.submit(
            "demo",
            {"id": assignment.id, "state": "finished", "submitted_data": {"category": category}},
        )
        print(f"[{name}] {assignment.asset.name}: {category}")
        answered += 1


async def main():
    DB_PATH.unlink(missing_ok=True)
    db = Database(DB_PATH)
    await db.initialize()
    hive = build_services(db, selection_seed=1)

    print("=" * 60)
    print("Hive Crowd Demo")
    print("=" * 60)

    await hive.catalog.create_project({"id": "demo", "name": "Newspaper Archive"})
    await hive.catalog.import_tasks(
        "demo",
        [
            {
                "name": "categorize",
                "current_state": "available",
                "completion_criteria": {"total": 3, "matching": 2},
            }
        ],
    )
    await hive.catalog.import_assets(
        "demo",
        [{"url": f"http://example.com/page-{n}.jpg", "name": f"page-{n}"} for n in range(PAGES)],
    )

    await asyncio.gather(
        simulate_worker("alice", hive, 0.9),
        simulate_worker("bob", hive, 0.8),
        simulate_worker("carol", hive, 0.6),
        simulate_worker("dave", hive, 0.3),
    )

    result = await hive.consensus.evaluate_task_completion("demo", "categorize")
    print("\n" + "-" * 60)
    for asset in result.completed:
        print(f"✅ {asset.name} verified as {asset.submitted_data['categorize']}")
    for err in result.errors:
        print(f"❌ {err.asset_id}: {err.cause}")

    summary = await hive.catalog.get_project("demo")
    print(f"\nAssignments: {summary.assignment_count}")
    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
