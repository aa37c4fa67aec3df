from __future__ import annotations

import pytest

from hive_mcp.db.database import Database
from hive_mcp.errors import InvariantViolation
from hive_mcp.models.asset import Asset
from hive_mcp.models.assignment import AssignmentState
from hive_mcp.models.user import User
from hive_mcp.services import counts
from hive_mcp.services.counts import CountsLedger


def make_asset(**counts_: int) -> Asset:
    return Asset(id="a1", project="news", url="http://example.com/a1.jpg", counts=counts_)


class TestCounterUpdates:
    def test_allocation_then_transition(self) -> None:
        asset = make_asset()
        counts.record_allocation(asset)
        assert asset.counts == {
            "Favorites": 0,
            "Assignments": 1,
            "finished": 0,
            "skipped": 0,
            "unfinished": 1,
        }

        counts.record_transition(asset, AssignmentState.SKIPPED)
        assert asset.counts["unfinished"] == 0
        assert asset.counts["skipped"] == 1
        assert asset.counts["Assignments"] == 1

    def test_transition_without_unfinished_is_refused(self) -> None:
        asset = make_asset(Assignments=1, finished=1)
        with pytest.raises(InvariantViolation):
            counts.record_transition(asset, AssignmentState.FINISHED)
        assert asset.counts["finished"] == 1
        assert asset.counts["unfinished"] == 0

    def test_unfavorite_below_zero_is_refused(self) -> None:
        asset = make_asset()
        with pytest.raises(InvariantViolation):
            counts.record_favorite(asset, favorited=False)
        assert asset.counts["Favorites"] == 0

    def test_inconsistent_totals_are_refused(self) -> None:
        asset = make_asset(Assignments=3, finished=1)
        with pytest.raises(InvariantViolation):
            counts.record_allocation(asset)

    def test_record_finished_fills_missing_task_counters(self) -> None:
        user = User(id="u1", project="news", counts={"Assignments": 2})
        counts.record_finished(user, "news-categorize", ["news-categorize", "news-find"])
        assert user.counts["Assignments"] == 3
        assert user.counts["news-categorize"] == 1
        assert user.counts["news-find"] == 0

    def test_record_verified_asset_once(self) -> None:
        user = User(id="u1", project="news")
        assert counts.record_verified_asset(user, "a1") is True
        assert counts.record_verified_asset(user, "a1") is False
        assert user.verified_assets == ["a1"]
        assert user.counts["VerifiedAssets"] == 1


@pytest.mark.asyncio
class TestCountsLedger:
    async def test_compute_counts_repairs_drift(self, db: Database, ledger: CountsLedger) -> None:
        asset = make_asset(Favorites=2, Assignments=9, finished=9)
        await db.put("assets", "a1", asset.model_dump(mode="json"))
        states = ["unfinished", "skipped", "finished", "verified", "finished"]
        for n, state in enumerate(states):
            await db.put(
                "assignments",
                f"as-{n}",
                {"asset": {"id": "a1"}, "state": state, "user": f"u{n}"},
            )
        await db.put("assignments", "other", {"asset": {"id": "a2"}, "state": "finished"})

        recomputed = await ledger.compute_counts("a1")
        assert recomputed == {
            "Favorites": 2,
            "Assignments": 5,
            "finished": 3,
            "skipped": 1,
            "unfinished": 1,
        }
        assert (await db.get("assets", "a1"))["counts"] == recomputed
