from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


@dataclass(frozen=True)
class Config:
    """Central configuration loaded from environment variables."""

    # Record store
    db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("HIVE_DB_PATH", "data/hive.db"))
    )
    store_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("HIVE_STORE_TIMEOUT", "10"))
    )

    # Asset selection; a fixed seed makes allocation reproducible
    selection_seed: int | None = field(
        default_factory=lambda: _optional_int("HIVE_SELECTION_SEED")
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: os.environ.get("HIVE_LOG_LEVEL", "INFO")
    )


def get_config() -> Config:
    """Return a Config instance built from the current environment."""
    return Config()
