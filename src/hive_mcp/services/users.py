from __future__ import annotations

import logging
from typing import Any

from hive_mcp.db.database import Database, generate_id
from hive_mcp.db.predicates import Term, all_of, field_path
from hive_mcp.errors import NotFound, ValidationError
from hive_mcp.models.asset import Asset
from hive_mcp.models.parsing import parse_model
from hive_mcp.models.user import FavoriteResult, User, new_user_counts
from hive_mcp.services import counts
from hive_mcp.services.catalog import TaskCatalog
from hive_mcp.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


class UserDirectory:
    """Worker records and their favorites.

    ``find_user`` never writes. Only ``find_or_create_user`` creates a user
    implicitly, and only assignment allocation calls it.
    """

    def __init__(self, db: Database, catalog: TaskCatalog, locks: KeyedLocks):
        self.db = db
        self.catalog = catalog
        self.locks = locks

    async def find_user(self, project: str, user_id: str) -> User:
        user = User.model_validate(await self.db.get("users", user_id))
        if user.project != project:
            raise NotFound("user", user_id)
        return user

    async def find_or_create_user(self, project: str, user_id: str) -> User:
        async with self.locks.hold("user", project, user_id):
            try:
                return await self.find_user(project, user_id)
            except NotFound:
                pass
            if await self._exists_elsewhere(user_id):
                raise ValidationError(f"User id {user_id!r} belongs to another project")
            logger.info("Creating user %s on first contact with %s", user_id, project)
            return await self.create_user(project, {"id": user_id})

    async def create_user(self, project: str, payload: User | dict[str, Any]) -> User:
        data = payload.model_dump(mode="json") if isinstance(payload, User) else dict(payload)
        data["project"] = project
        data["id"] = data.get("id") or generate_id()
        task_ids = [task.id for task in await self.catalog.find_tasks(project)]
        data.setdefault("counts", new_user_counts(task_ids))
        user = parse_model(User, data)
        await self.db.put("users", user.id, user.model_dump(mode="json"))
        await self.db.refresh()
        return user

    async def find_by_external_id(self, project: str, external_id: str) -> User:
        result = await self.db.query(
            "users",
            all_of(
                Term(field_path("project"), project),
                Term(field_path("external_id"), external_id),
            ),
            limit=1,
        )
        if not result.records:
            raise NotFound("user", external_id)
        return User.model_validate(result.records[0])

    async def create_external_user(self, project: str, external_id: str) -> User:
        """Link an account from an outside registration system to a Hive user."""
        try:
            return await self.find_by_external_id(project, external_id)
        except NotFound:
            return await self.create_user(project, {"external_id": external_id})

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def toggle_favorite(self, project: str, user_id: str, asset_id: str) -> FavoriteResult:
        """Favorite an asset, or unfavorite it if the user already had.

        The user keeps its own copy of the asset; the asset record only sees
        its ``Favorites`` counter change.
        """
        async with self.locks.hold("user", project, user_id):
            user = await self.find_user(project, user_id)
            favorited = asset_id not in user.favorites

            async with self.locks.hold("asset", asset_id):
                asset = await self.catalog.find_asset(project, asset_id)
                counts.record_favorite(asset, favorited)
                await self.db.put("assets", asset_id, asset.model_dump(mode="json"))

            if favorited:
                user.favorites[asset_id] = asset.model_copy(deep=True)
            else:
                del user.favorites[asset_id]
            counts.sync_user_favorites(user)
            await self.db.put("users", user.id, user.model_dump(mode="json"))
            await self.db.refresh()

        action = "favorited" if favorited else "unfavorited"
        logger.info("User %s %s asset %s", user_id, action, asset_id)
        return FavoriteResult(asset_id=asset_id, action=action)

    async def list_favorites(
        self, project: str, user_id: str, offset: int = 0, limit: int = 10
    ) -> tuple[list[Asset], int]:
        user = await self.find_user(project, user_id)
        favorites = list(user.favorites.values())
        return favorites[offset : offset + limit], len(favorites)

    async def _exists_elsewhere(self, user_id: str) -> bool:
        try:
            await self.db.get("users", user_id)
        except NotFound:
            return False
        return True
