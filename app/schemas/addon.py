from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.addon import Addon, AddonBillingType, AddonCategory, AddonLimits
from app.models.plan import Currency


class AddonCreate(BaseModel):
    """Schema for creating an add-on."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    currency: Currency = "INR"
    category: AddonCategory
    billingType: AddonBillingType = "monthly"
    billingCycleMonths: int | None = Field(None, ge=1, le=120)
    features: list[str] = Field(default_factory=list)
    limits: AddonLimits = Field(default_factory=AddonLimits)
    isActive: bool = True
    sortOrder: int = 0


class AddonResponse(BaseModel):
    id: str
    name: str
    description: str
    price: float
    currency: str
    category: str
    billingType: str
    billingCycleMonths: int | None = None
    features: list[str]
    limits: AddonLimits
    isActive: bool
    sortOrder: int
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_document(cls, addon: Addon) -> AddonResponse:
        return cls(id=str(addon.id), **addon.model_dump(exclude={"id", "revision_id"}))
