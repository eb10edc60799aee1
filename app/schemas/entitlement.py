from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.models.plan import PlanLimits

EntitlementSource = Literal["free_tier", "plan_snapshot", "live_plan"]


class GateAccess(BaseModel):
    """Result of one feature gate. limit 0 means unlimited."""

    hasAccess: bool
    limit: int = 0


class ActiveAddonEntitlement(BaseModel):
    addonId: str
    name: str
    category: str
    features: list[str] = Field(default_factory=list)
    expiryDate: datetime | None = None


class EntitlementSet(BaseModel):
    """What a caller may currently do. Compared by value."""

    limits: PlanLimits
    features: list[str] = Field(default_factory=list)
    gates: dict[str, GateAccess] = Field(default_factory=dict)
    addons: list[ActiveAddonEntitlement] = Field(default_factory=list)
    source: EntitlementSource = "free_tier"
    planName: str | None = None
    subscriptionId: str | None = None
    expiresAt: datetime | None = None

    def has_feature(self, name: str) -> bool:
        needle = name.lower()
        return any(needle == feature.lower() for feature in self.features)


class PropertyLimitCheck(BaseModel):
    allowed: bool
    limit: int
    unlimited: bool
    currentCount: int
    remaining: int | None = None
