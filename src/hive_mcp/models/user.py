from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from hive_mcp.models.asset import ASSIGNMENTS, FAVORITES, Asset

VERIFIED_ASSETS = "VerifiedAssets"


def new_user_counts(task_ids: list[str] | None = None) -> dict[str, int]:
    counts = {FAVORITES: 0, ASSIGNMENTS: 0, VERIFIED_ASSETS: 0}
    for task_id in task_ids or []:
        counts[task_id] = 0
    return counts


class User(BaseModel):
    """A member of the crowd, scoped to one project."""

    id: str
    project: str
    name: str = ""
    email: str = ""
    external_id: Optional[str] = None
    counts: dict[str, int] = Field(default_factory=new_user_counts)
    # asset id -> copy of the asset at the time it was favorited
    favorites: dict[str, Asset] = Field(default_factory=dict)
    verified_assets: list[str] = Field(default_factory=list)


class FavoriteResult(BaseModel):
    asset_id: str
    action: Literal["favorited", "unfavorited"]
