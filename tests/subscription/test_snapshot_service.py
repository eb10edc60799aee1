"""Test cases for plan and add-on snapshots."""

from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from pydantic import ValidationError

from app.models.plan import PlanFeature, PlanLimits
from app.services.snapshot_service import (
    SnapshotService,
    build_addon_snapshot,
    build_addons_snapshot,
    build_plan_snapshot,
)


class TestBuildSnapshots:
    def test_plan_snapshot_copies_terms(self, sample_plan):
        snapshot = build_plan_snapshot(sample_plan)

        assert snapshot.name == sample_plan.name
        assert snapshot.price == sample_plan.price
        assert snapshot.billingPeriod == "monthly"
        assert snapshot.limits == sample_plan.limits
        assert [f.name for f in snapshot.features] == [
            "Premium analytics",
            "Priority listing",
        ]

    def test_plan_snapshot_is_detached_from_plan(self, sample_plan):
        snapshot = build_plan_snapshot(sample_plan)

        sample_plan.limits.properties = 1
        sample_plan.features.append(PlanFeature(name="Later feature"))
        sample_plan.limits = PlanLimits(properties=2)

        assert snapshot.limits.properties == 10
        assert len(snapshot.features) == 2

    def test_plan_snapshot_is_frozen(self, sample_plan):
        snapshot = build_plan_snapshot(sample_plan)

        with pytest.raises(ValidationError):
            snapshot.name = "Tampered"

    def test_none_plan(self):
        assert build_plan_snapshot(None) is None

    def test_addon_snapshot(self, sample_addon):
        snapshot = build_addon_snapshot(sample_addon)

        assert snapshot.addonId == sample_addon.id
        assert snapshot.limits.featuredListings == 5
        assert snapshot.features == ["Featured badge"]

    def test_addons_snapshot_skips_unresolved(self, sample_addon):
        snapshots = build_addons_snapshot([None, sample_addon, None])
        assert [s.addonId for s in snapshots] == [sample_addon.id]


class TestSnapshotService:
    @pytest.fixture
    def snapshot_service(self):
        return SnapshotService(None)

    @pytest.mark.asyncio
    async def test_snapshot_plan(self, snapshot_service, sample_plan):
        snapshot_service.plan_service.get_plan_by_id = AsyncMock(return_value=sample_plan)

        snapshot = await snapshot_service.snapshot_plan(sample_plan.id)

        assert snapshot.name == "Premium"
        snapshot_service.plan_service.get_plan_by_id.assert_awaited_once_with(
            str(sample_plan.id)
        )

    @pytest.mark.asyncio
    async def test_unresolved_plan_gives_no_snapshot(self, snapshot_service):
        snapshot_service.plan_service.get_plan_by_id = AsyncMock(return_value=None)

        assert await snapshot_service.snapshot_plan(ObjectId()) is None

    @pytest.mark.asyncio
    async def test_resolve_addons_drops_missing(self, snapshot_service, sample_addon):
        missing = ObjectId()
        snapshot_service.addon_service.get_addon_by_id = AsyncMock(
            side_effect=lambda addon_id: sample_addon
            if addon_id == str(sample_addon.id)
            else None
        )

        snapshots = await snapshot_service.snapshot_addons([sample_addon.id, missing])

        assert [s.addonId for s in snapshots] == [sample_addon.id]
