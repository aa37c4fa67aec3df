from __future__ import annotations

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure the ``hive_mcp`` logger for the server and CLI."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root = logging.getLogger("hive_mcp")
    root.setLevel(numeric_level)
    if not root.handlers:
        root.addHandler(handler)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
