from __future__ import annotations

import logging
from typing import Any, Awaitable

from hive_mcp.errors import HiveError

logger = logging.getLogger(__name__)


async def guarded(operation: Awaitable[dict[str, Any]]) -> dict[str, Any]:
    """Await a tool body, turning engine errors into ``{"error", "message"}`` replies."""
    try:
        return await operation
    except HiveError as exc:
        logger.warning("Tool call failed (%s): %s", exc.code, exc)
        return exc.to_dict()
