from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from beanie import Document, Insert, Replace, before_event
from pydantic import Field, ValidationInfo, field_validator

from app.models.plan import Currency, LeadManagementTier, PlanLimits, SupportTier

AddonCategory = Literal["photography", "marketing", "technology", "support", "crm"]
AddonBillingType = Literal["per_property", "monthly", "yearly", "one_time"]

DEFAULT_CYCLE_MONTHS: dict[str, int] = {"monthly": 1, "yearly": 12}


class AddonLimits(PlanLimits):
    """Grants an add-on contributes on top of the plan. Everything defaults to off."""

    photos: int = Field(default=0, ge=0)
    support: SupportTier = "none"
    leadManagement: LeadManagementTier = "none"


class Addon(Document):
    """Add-on catalog entry."""

    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    currency: Currency = "INR"
    category: AddonCategory
    billingType: AddonBillingType = "monthly"
    billingCycleMonths: int | None = Field(
        default=None, ge=1, le=120, validate_default=True
    )
    features: list[str] = Field(default_factory=list)
    limits: AddonLimits = Field(default_factory=AddonLimits)
    isActive: bool = True
    sortOrder: int = 0
    createdAt: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updatedAt: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("billingCycleMonths")
    @classmethod
    def default_billing_cycle(cls, v: int | None, info: ValidationInfo) -> int | None:
        if v is None:
            return DEFAULT_CYCLE_MONTHS.get(info.data.get("billingType"))
        return v

    @before_event([Insert, Replace])
    def set_timestamps(self):
        now = datetime.now(UTC)
        if self.createdAt is None:
            self.createdAt = now
        self.updatedAt = now

    class Settings:
        name = "addons"
