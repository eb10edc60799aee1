from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Literal

from beanie import Document, Insert, Replace, before_event
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ASCENDING, IndexModel

from app.models.addon import AddonBillingType, AddonCategory, AddonLimits
from app.models.plan import BillingPeriod, Currency, PlanFeature, PlanLimits
from app.utils.dates import as_utc
from app.utils.validators import PyObjectId

SubscriptionCurrency = Literal["INR", "USD", "EUR"]
PaymentMethod = Literal[
    "credit_card", "debit_card", "upi", "net_banking", "wallet", "razorpay"
]
PaymentHistoryType = Literal["purchase", "addon_purchase", "renewal", "upgrade"]
SubscriptionStatusValue = Literal["pending", "active", "expired", "cancelled"]


class SubscriptionStatus:
    """Subscription status constants."""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    ALL = (PENDING, ACTIVE, CANCELLED, EXPIRED)


class PaymentType:
    """Payment history entry types."""

    PURCHASE = "purchase"
    ADDON_PURCHASE = "addon_purchase"
    RENEWAL = "renewal"
    UPGRADE = "upgrade"


class PlanSnapshot(BaseModel):
    """Frozen copy of a plan as it was when the subscription was paid for."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    price: float
    currency: Currency = "INR"
    billingPeriod: BillingPeriod = "monthly"
    features: list[PlanFeature] = Field(default_factory=list)
    limits: PlanLimits = Field(default_factory=PlanLimits)


class AddonSnapshot(BaseModel):
    """Frozen copy of an add-on as it was when it was attached."""

    model_config = ConfigDict(frozen=True)

    addonId: PyObjectId
    name: str
    description: str = ""
    price: float
    currency: Currency = "INR"
    category: AddonCategory
    billingType: AddonBillingType
    features: list[str] = Field(default_factory=list)
    limits: AddonLimits = Field(default_factory=AddonLimits)


class AddonDetail(BaseModel):
    """Activity window of one attached add-on."""

    addonId: PyObjectId
    purchaseDate: datetime
    expiryDate: datetime | None = None
    isActive: bool = True
    billingCycleMonths: int | None = None

    def is_effective(self, now: datetime | None = None) -> bool:
        if not self.isActive:
            return False
        if self.expiryDate is None:
            return True
        return as_utc(self.expiryDate) > (now or datetime.now(UTC))


class PaymentHistoryEntry(BaseModel):
    type: PaymentHistoryType
    amount: float = Field(..., ge=0)
    addonIds: list[PyObjectId] = Field(default_factory=list)
    paymentRef: str | None = None
    orderRef: str | None = None
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Subscription(Document):
    """One purchase of a plan by a user, with its frozen plan and add-on terms."""

    userId: PyObjectId
    planId: PyObjectId
    planSnapshot: PlanSnapshot | None = None
    addonIds: list[PyObjectId] = Field(default_factory=list)
    addonDetails: list[AddonDetail] = Field(default_factory=list)
    addonsSnapshot: list[AddonSnapshot] = Field(default_factory=list)
    status: SubscriptionStatusValue = SubscriptionStatus.PENDING
    startDate: datetime
    endDate: datetime
    amount: float = Field(..., ge=0)
    currency: SubscriptionCurrency = "INR"
    paymentMethod: PaymentMethod
    transactionId: str | None = None
    autoRenew: bool = False
    renewalAttempts: int = 0
    lastPaymentDate: datetime | None = None
    nextBillingDate: datetime | None = None
    cancellationReason: str | None = None
    cancelledAt: datetime | None = None
    paymentHistory: list[PaymentHistoryEntry] = Field(default_factory=list)
    createdAt: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updatedAt: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @before_event([Insert, Replace])
    def set_timestamps(self):
        now = datetime.now(UTC)
        if self.createdAt is None:
            self.createdAt = now
        self.updatedAt = now

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return self.status == SubscriptionStatus.ACTIVE and as_utc(self.endDate) > now

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return self.status == SubscriptionStatus.EXPIRED or as_utc(self.endDate) <= now

    def days_remaining(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        if self.is_expired(now):
            return 0
        remaining = (as_utc(self.endDate) - now).total_seconds() / 86400
        return max(0, math.ceil(remaining))

    class Settings:
        name = "subscriptions"
        use_revision = True
        indexes = [
            [("userId", ASCENDING), ("status", ASCENDING)],
            [("planId", ASCENDING), ("status", ASCENDING)],
            "endDate",
            IndexModel(
                [("transactionId", ASCENDING)],
                name="transactionId_unique",
                unique=True,
                partialFilterExpression={"transactionId": {"$type": "string"}},
            ),
        ]
