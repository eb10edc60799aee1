"""
Snapshot builder.

Freezes plan and add-on definitions into value objects that a subscription
keeps for its whole life, so catalog edits never reach existing subscribers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from app.models.addon import Addon
from app.models.plan import Plan
from app.models.subscription import AddonSnapshot, PlanSnapshot
from app.services.addon_service import AddonService
from app.services.plan_service import PlanService

logger = logging.getLogger(__name__)


def build_plan_snapshot(plan: Plan | None) -> PlanSnapshot | None:
    """Deep-copy the purchasable terms of a plan. None in, None out."""
    if plan is None:
        return None
    data = plan.model_dump(
        include={
            "name",
            "description",
            "price",
            "currency",
            "billingPeriod",
            "features",
            "limits",
        }
    )
    return PlanSnapshot.model_validate(data)


def build_addon_snapshot(addon: Addon) -> AddonSnapshot:
    data = addon.model_dump(
        include={
            "name",
            "description",
            "price",
            "currency",
            "category",
            "billingType",
            "features",
            "limits",
        }
    )
    return AddonSnapshot.model_validate({"addonId": addon.id, **data})


def build_addons_snapshot(addons: Iterable[Addon | None]) -> list[AddonSnapshot]:
    """Snapshot every add-on that resolved; unresolved entries are skipped."""
    return [build_addon_snapshot(addon) for addon in addons if addon is not None]


class SnapshotService:
    """Resolves catalog references and snapshots them."""

    def __init__(self, db):
        self.db = db
        self.plan_service = PlanService(db)
        self.addon_service = AddonService(db)

    async def snapshot_plan(self, plan_id) -> PlanSnapshot | None:
        """
        Snapshot the current catalog version of a plan.

        Returns None when the plan no longer resolves; the subscription is then
        left without a snapshot and resolves to least privilege.
        """
        plan = await self.plan_service.get_plan_by_id(str(plan_id))
        if plan is None:
            logger.warning(
                "Plan reference unresolved, continuing without snapshot",
                extra={"plan_id": str(plan_id)},
            )
            return None
        return build_plan_snapshot(plan)

    async def resolve_addons(self, addon_ids: Iterable) -> list[Addon]:
        """Resolve add-on ids, dropping (and logging) those that no longer exist."""
        resolved: list[Addon] = []
        for addon_id in addon_ids:
            addon = await self.addon_service.get_addon_by_id(str(addon_id))
            if addon is None:
                logger.warning(
                    "Add-on reference unresolved, skipping",
                    extra={"addon_id": str(addon_id)},
                )
                continue
            resolved.append(addon)
        return resolved

    async def snapshot_addons(self, addon_ids: Iterable) -> list[AddonSnapshot]:
        return build_addons_snapshot(await self.resolve_addons(addon_ids))
