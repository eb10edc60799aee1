from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from beanie import Document, Indexed, Insert, Replace, before_event
from pydantic import BaseModel, Field

from app.utils.validators import PyObjectId

Currency = Literal["INR", "USD", "EUR", "GBP"]
BillingPeriod = Literal["custom", "monthly", "yearly", "lifetime", "one-time"]
SupportTier = Literal["none", "email", "priority", "phone", "dedicated"]
LeadManagementTier = Literal["none", "basic", "advanced", "premium", "enterprise"]

# Ordered lowest to highest; used when merging plan and add-on grants
SUPPORT_TIERS: tuple[str, ...] = ("none", "email", "priority", "phone", "dedicated")
LEAD_MANAGEMENT_TIERS: tuple[str, ...] = (
    "none",
    "basic",
    "advanced",
    "premium",
    "enterprise",
)

NUMERIC_CAPS: tuple[str, ...] = (
    "properties",
    "featuredListings",
    "photos",
    "videoTours",
    "videos",
    "leads",
    "posters",
    "messages",
)
BOOLEAN_CAPS: tuple[str, ...] = (
    "topRated",
    "verifiedBadge",
    "marketingManager",
    "commissionBased",
)
TIER_CAPS: dict[str, tuple[str, ...]] = {
    "support": SUPPORT_TIERS,
    "leadManagement": LEAD_MANAGEMENT_TIERS,
}

# Caps where 0 means "no cap at all" rather than "not included"
UNLIMITED_WHEN_ZERO: frozenset[str] = frozenset({"properties"})


class PlanFeature(BaseModel):
    """A named feature line shown on a plan."""

    name: str
    description: str | None = None
    enabled: bool = True


class PlanLimits(BaseModel):
    """
    Typed limit set of a plan.

    Numeric caps are non-negative integers. ``properties == 0`` means
    unlimited; for every other numeric cap 0 means the capability is not
    included.
    """

    properties: int = Field(default=0, ge=0)
    featuredListings: int = Field(default=0, ge=0)
    photos: int = Field(default=10, ge=0)
    videoTours: int = Field(default=0, ge=0)
    videos: int = Field(default=0, ge=0)
    leads: int = Field(default=0, ge=0)
    posters: int = Field(default=0, ge=0)
    messages: int = Field(default=0, ge=0)
    topRated: bool = False
    verifiedBadge: bool = False
    marketingManager: bool = False
    commissionBased: bool = False
    support: SupportTier = "email"
    leadManagement: LeadManagementTier = "basic"


class PriceChange(BaseModel):
    price: float
    changedAt: datetime = Field(default_factory=lambda: datetime.now(UTC))
    changedBy: PyObjectId | None = None
    reason: str | None = None


class Plan(Document):
    """Plan catalog entry. Mutable; subscriptions keep their own snapshot."""

    identifier: Indexed(str, unique=True)
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    currency: Currency = "INR"
    billingPeriod: BillingPeriod = "monthly"
    billingCycleMonths: int = Field(default=1, ge=1, le=120)
    features: list[PlanFeature] = Field(default_factory=list)
    limits: PlanLimits = Field(default_factory=PlanLimits)
    isActive: bool = True
    isPopular: bool = False
    sortOrder: int = 0
    priceHistory: list[PriceChange] = Field(default_factory=list)
    createdAt: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updatedAt: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @before_event([Insert, Replace])
    def set_timestamps(self):
        now = datetime.now(UTC)
        if self.createdAt is None:
            self.createdAt = now
        self.updatedAt = now

    def record_price_change(
        self,
        new_price: float,
        changed_by: PyObjectId | None = None,
        reason: str | None = None,
    ) -> None:
        """Set a new price and keep the change in priceHistory. Does not save."""
        if new_price == self.price:
            return
        self.price = new_price
        self.priceHistory.append(
            PriceChange(price=new_price, changedBy=changed_by, reason=reason)
        )

    class Settings:
        name = "plans"
