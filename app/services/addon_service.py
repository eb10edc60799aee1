from __future__ import annotations

import logging

from app.core.exceptions import UnresolvedReferenceException
from app.models.addon import Addon
from app.schemas.addon import AddonCreate
from app.utils.validators import to_object_id

logger = logging.getLogger(__name__)


class AddonService:
    """Add-on catalog."""

    def __init__(self, db):
        self.db = db

    async def get_addon_by_id(self, addon_id: str) -> Addon | None:
        oid = to_object_id(addon_id)
        if oid is None:
            return None
        try:
            return await Addon.get(oid)
        except Exception as e:
            logger.error(
                "Error getting add-on by ID",
                extra={"addon_id": str(addon_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def require_addon(self, addon_id: str) -> Addon:
        addon = await self.get_addon_by_id(addon_id)
        if not addon:
            raise UnresolvedReferenceException("Addon", str(addon_id))
        return addon

    async def get_addons_by_ids(self, addon_ids: list[str]) -> list[Addon | None]:
        """Resolve each id in order; unknown ids come back as None."""
        return [await self.get_addon_by_id(addon_id) for addon_id in addon_ids]

    async def list_addons(
        self, active_only: bool = True, category: str | None = None
    ) -> list[Addon]:
        try:
            query: dict = {}
            if active_only:
                query["isActive"] = True
            if category:
                query["category"] = category
            addons = await Addon.find(query).sort("sortOrder").to_list()

            logger.info(
                "Add-ons listed",
                extra={"count": len(addons), "active_only": active_only, "category": category},
            )
            return addons

        except Exception as e:
            logger.error("Error listing add-ons", extra={"error": str(e)}, exc_info=True)
            raise

    async def create_addon(self, addon_data: AddonCreate) -> Addon:
        try:
            addon = Addon(**addon_data.model_dump())
            await addon.insert()

            logger.info(
                "Add-on created",
                extra={"addon_id": str(addon.id), "addon_name": addon.name},
            )
            return addon

        except Exception as e:
            logger.error(
                "Error creating add-on",
                extra={"addon_name": addon_data.name, "error": str(e)},
                exc_info=True,
            )
            raise
