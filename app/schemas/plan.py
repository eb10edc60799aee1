from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.models.plan import (
    BillingPeriod,
    Currency,
    Plan,
    PlanFeature,
    PlanLimits,
    PriceChange,
)


class PlanCreate(BaseModel):
    """Schema for creating a plan."""

    identifier: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
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

    @field_validator("identifier")
    @classmethod
    def normalize_identifier(cls, v: str) -> str:
        return v.strip().lower()


class PlanUpdate(BaseModel):
    """Schema for updating a plan. Only the fields that are set are applied."""

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    price: float | None = Field(None, ge=0)
    currency: Currency | None = None
    billingPeriod: BillingPeriod | None = None
    billingCycleMonths: int | None = Field(None, ge=1, le=120)
    features: list[PlanFeature] | None = None
    limits: PlanLimits | None = None
    isActive: bool | None = None
    isPopular: bool | None = None
    sortOrder: int | None = None
    priceChangeReason: str | None = Field(None, max_length=500)


class PlanResponse(BaseModel):
    """Schema for plan response."""

    id: str
    identifier: str
    name: str
    description: str
    price: float
    currency: str
    billingPeriod: str
    billingCycleMonths: int
    features: list[PlanFeature]
    limits: PlanLimits
    isActive: bool
    isPopular: bool
    sortOrder: int
    priceHistory: list[PriceChange] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_document(cls, plan: Plan) -> PlanResponse:
        return cls(id=str(plan.id), **plan.model_dump(exclude={"id", "revision_id"}))


class PlanFieldChange(BaseModel):
    field: str
    type: str
    oldValue: Any = None
    newValue: Any = None


class PlanChangeImpact(BaseModel):
    """How many subscribers a plan edit would touch, and how."""

    planId: str
    planName: str
    activeSubscriptions: int
    pendingSubscriptions: int
    totalAffected: int
    changes: list[PlanFieldChange] = Field(default_factory=list)
    affectsExistingUsers: bool = False
    affectsNewUsers: bool = True
    note: str
