"""Counts ledger: cached tallies kept on asset and user records.

The counters are a derived cache. Mutations here validate before they
change anything, so a record is never written with a negative counter or
with ``Assignments`` out of step with its per-state counts.
``CountsLedger.compute_counts`` rebuilds asset counters from the
authoritative assignment records when the cache has drifted.
"""

from __future__ import annotations

import logging

from hive_mcp.db.database import Database
from hive_mcp.db.predicates import Term, field_path
from hive_mcp.errors import InvariantViolation
from hive_mcp.services.locks import KeyedLocks
from hive_mcp.models.asset import ASSET_COUNT_KEYS, ASSIGNMENTS, FAVORITES, Asset
from hive_mcp.models.assignment import AssignmentState
from hive_mcp.models.user import VERIFIED_ASSETS, User

logger = logging.getLogger(__name__)

STATE_KEYS = (
    AssignmentState.FINISHED.value,
    AssignmentState.SKIPPED.value,
    AssignmentState.UNFINISHED.value,
)


def ensure_asset_counts(asset: Asset) -> dict[str, int]:
    """Fill any missing asset counter with zero and return the counts."""
    for key in ASSET_COUNT_KEYS:
        asset.counts.setdefault(key, 0)
    return asset.counts


def check_asset_counts(counts: dict[str, int], asset_id: str | None = None) -> None:
    negative = {key: value for key, value in counts.items() if value < 0}
    if negative:
        raise InvariantViolation(f"Asset {asset_id!r} counters would go negative: {negative}")
    state_total = sum(counts.get(key, 0) for key in STATE_KEYS)
    if counts.get(ASSIGNMENTS, 0) != state_total:
        raise InvariantViolation(
            f"Asset {asset_id!r} has {counts.get(ASSIGNMENTS, 0)} assignments "
            f"but {state_total} across {', '.join(STATE_KEYS)}"
        )


def _apply(asset: Asset, deltas: dict[str, int]) -> None:
    counts = ensure_asset_counts(asset)
    updated = dict(counts)
    for key, delta in deltas.items():
        updated[key] = updated.get(key, 0) + delta
    check_asset_counts(updated, asset.id)
    counts.update(updated)


def record_allocation(asset: Asset) -> None:
    """A new unfinished assignment now references ``asset``."""
    _apply(asset, {ASSIGNMENTS: 1, AssignmentState.UNFINISHED.value: 1})


def record_transition(asset: Asset, new_state: AssignmentState) -> None:
    """An unfinished assignment on ``asset`` moved to ``new_state``."""
    _apply(asset, {AssignmentState.UNFINISHED.value: -1, new_state.value: 1})


def record_favorite(asset: Asset, favorited: bool) -> None:
    _apply(asset, {FAVORITES: 1 if favorited else -1})


def record_finished(user: User, task_id: str, project_task_ids: list[str]) -> None:
    """Credit ``user`` with a finished assignment on ``task_id``.

    Users created before a task existed lack its counter; every project task
    gets a zero entry first.
    """
    for known in [*project_task_ids, task_id]:
        user.counts.setdefault(known, 0)
    user.counts.setdefault(ASSIGNMENTS, 0)
    user.counts[ASSIGNMENTS] += 1
    user.counts[task_id] += 1


def sync_user_favorites(user: User) -> None:
    user.counts[FAVORITES] = len(user.favorites)


def record_verified_asset(user: User, asset_id: str) -> bool:
    """Note that ``user`` contributed to verifying ``asset_id``; False if already noted."""
    added = asset_id not in user.verified_assets
    if added:
        user.verified_assets.append(asset_id)
    user.counts[VERIFIED_ASSETS] = len(user.verified_assets)
    return added


class CountsLedger:
    """Recomputes cached counters from assignment aggregates."""

    def __init__(self, db: Database, locks: KeyedLocks):
        self.db = db
        self.locks = locks

    async def compute_counts(self, asset_id: str) -> dict[str, int]:
        """Rebuild an asset's assignment counters and persist them.

        Verified assignments are finished ones that reached consensus, so they
        count towards ``finished``. ``Favorites`` is kept as stored.
        """
        async with self.locks.hold("asset", asset_id):
            asset = Asset.model_validate(await self.db.get("assets", asset_id))
            counts = await self._tally(asset)
            if counts != asset.counts:
                logger.info(
                    "Repaired counts for asset %s: %s -> %s", asset_id, asset.counts, counts
                )
            asset.counts = counts
            await self.db.put("assets", asset_id, asset.model_dump(mode="json"))
        return counts

    async def _tally(self, asset: Asset) -> dict[str, int]:
        await self.db.refresh()
        buckets = await self.db.aggregate(
            "assignments",
            Term(field_path("asset", "id"), asset.id),
            group_by=field_path("state"),
        )
        by_state = {state: bucket.count for state, bucket in buckets.items()}

        counts = {
            FAVORITES: asset.counts.get(FAVORITES, 0),
            AssignmentState.FINISHED.value: by_state.get(AssignmentState.FINISHED.value, 0)
            + by_state.get(AssignmentState.VERIFIED.value, 0),
            AssignmentState.SKIPPED.value: by_state.get(AssignmentState.SKIPPED.value, 0),
            AssignmentState.UNFINISHED.value: by_state.get(AssignmentState.UNFINISHED.value, 0),
        }
        counts[ASSIGNMENTS] = sum(counts[key] for key in STATE_KEYS)
        check_asset_counts(counts, asset.id)
        return counts
