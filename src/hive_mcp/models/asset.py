from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

ASSIGNMENTS = "Assignments"
FAVORITES = "Favorites"

ASSET_COUNT_KEYS = (FAVORITES, ASSIGNMENTS, "finished", "skipped", "unfinished")


def new_asset_counts() -> dict[str, int]:
    return {key: 0 for key in ASSET_COUNT_KEYS}


class Asset(BaseModel):
    """A unit of content (image, pdf, clipping...) that workers perform tasks on."""

    id: Optional[str] = None
    project: str
    url: str = Field(min_length=1)
    name: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    # task name -> agreed answer, None until consensus is reached
    submitted_data: dict[str, Any] = Field(default_factory=dict)
    verified: bool = False
    counts: dict[str, int] = Field(default_factory=new_asset_counts)
