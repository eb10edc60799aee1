from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.subscription import (
    AddonDetail,
    AddonSnapshot,
    PaymentHistoryEntry,
    PaymentMethod,
    PlanSnapshot,
    Subscription,
    SubscriptionCurrency,
)


class SubscriptionCreate(BaseModel):
    """Schema for starting a checkout. The subscription stays pending until paid."""

    planId: str = Field(..., description="Plan ID")
    amount: float = Field(..., ge=0)
    paymentMethod: PaymentMethod
    currency: SubscriptionCurrency | None = None
    billingCycleMonths: int | None = Field(None, ge=1, le=120)
    addonIds: list[str] = Field(default_factory=list)
    autoRenew: bool = False
    userId: str | None = Field(
        None, description="Admin only: create the subscription on behalf of a user"
    )


class SubscriptionActivate(BaseModel):
    """Verified payment handed over by the payment gateway."""

    transactionRef: str = Field(..., min_length=1)
    amount: float | None = Field(None, ge=0)
    orderRef: str | None = None


class SubscriptionRenew(BaseModel):
    newEndDate: datetime
    transactionRef: str = Field(..., min_length=1)
    amount: float | None = Field(None, ge=0)
    planId: str | None = Field(
        None, description="Re-snapshot the subscription against this plan"
    )


class SubscriptionCancel(BaseModel):
    reason: str = Field("Cancelled by user", max_length=500)


class AddonAttach(BaseModel):
    addonId: str
    billingCycleMonths: int | None = Field(None, ge=1, le=120)
    amount: float | None = Field(None, ge=0)
    paymentRef: str | None = None


class SubscriptionUpgrade(BaseModel):
    planId: str
    transactionRef: str | None = None
    amount: float | None = Field(None, ge=0)


class SubscriptionResponse(BaseModel):
    """Schema for subscription response, with the derived activity fields."""

    id: str
    userId: str
    planId: str
    planSnapshot: PlanSnapshot | None = None
    addonIds: list[str] = Field(default_factory=list)
    addonDetails: list[AddonDetail] = Field(default_factory=list)
    addonsSnapshot: list[AddonSnapshot] = Field(default_factory=list)
    status: str
    startDate: datetime
    endDate: datetime
    amount: float
    currency: str
    paymentMethod: str
    transactionId: str | None = None
    autoRenew: bool
    renewalAttempts: int
    lastPaymentDate: datetime | None = None
    nextBillingDate: datetime | None = None
    cancellationReason: str | None = None
    cancelledAt: datetime | None = None
    paymentHistory: list[PaymentHistoryEntry] = Field(default_factory=list)
    isActive: bool
    isExpired: bool
    daysRemaining: int
    createdAt: datetime
    updatedAt: datetime

    @classmethod
    def from_document(
        cls, subscription: Subscription, now: datetime | None = None
    ) -> SubscriptionResponse:
        return cls(
            id=str(subscription.id),
            userId=str(subscription.userId),
            planId=str(subscription.planId),
            planSnapshot=subscription.planSnapshot,
            addonIds=[str(a) for a in subscription.addonIds],
            addonDetails=subscription.addonDetails,
            addonsSnapshot=subscription.addonsSnapshot,
            status=subscription.status,
            startDate=subscription.startDate,
            endDate=subscription.endDate,
            amount=subscription.amount,
            currency=subscription.currency,
            paymentMethod=subscription.paymentMethod,
            transactionId=subscription.transactionId,
            autoRenew=subscription.autoRenew,
            renewalAttempts=subscription.renewalAttempts,
            lastPaymentDate=subscription.lastPaymentDate,
            nextBillingDate=subscription.nextBillingDate,
            cancellationReason=subscription.cancellationReason,
            cancelledAt=subscription.cancelledAt,
            paymentHistory=subscription.paymentHistory,
            isActive=subscription.is_active(now),
            isExpired=subscription.is_expired(now),
            daysRemaining=subscription.days_remaining(now),
            createdAt=subscription.createdAt,
            updatedAt=subscription.updatedAt,
        )


class PaymentHistoryItem(BaseModel):
    """One ledger entry, tagged with the subscription it belongs to."""

    subscriptionId: str
    planName: str | None = None
    type: str
    amount: float
    addonIds: list[str] = Field(default_factory=list)
    paymentRef: str | None = None
    orderRef: str | None = None
    date: datetime


class LedgerSummary(BaseModel):
    """Totals handed to invoicing."""

    subscriptionId: str
    currency: str
    entryCount: int
    totalPaid: float
    planRevenue: float = 0.0
    addonRevenue: float = 0.0
    totalsByType: dict[str, float]
    lastPaymentDate: datetime | None = None


class RevenueStats(BaseModel):
    """Plan revenue counts upgrades only by what they add over the previous plan."""

    subscriptionCount: int
    totalPaidRevenue: float
    addonPaidRevenue: float
    grandTotalRevenue: float
    monthlyPaidRevenue: float
    revenueByStatus: dict[str, float]


class SubscriptionStats(BaseModel):
    total: int
    byStatus: dict[str, int]
    activeWithinTerm: int


class ReconciliationReport(BaseModel):
    usersChecked: int = 0
    duplicatesCancelled: int = 0
    cancelledSubscriptionIds: list[str] = Field(default_factory=list)


class BackfillReport(BaseModel):
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class InvalidSubscription(BaseModel):
    subscriptionId: str
    userId: str
    planId: str
    status: str
    hasSnapshot: bool


class ExpirySweepReport(BaseModel):
    checked: int = 0
    expired: int = 0
    addonsDeactivated: int = 0
