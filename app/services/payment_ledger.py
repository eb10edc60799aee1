"""
Payment history ledger.

The ledger lives on the subscription document as an append-only list.
``append`` is the only writer; nothing here edits or removes entries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from app.models.subscription import (
    PaymentHistoryEntry,
    PaymentType,
    Subscription,
    SubscriptionStatus,
)
from app.schemas.subscription import LedgerSummary, PaymentHistoryItem, RevenueStats
from app.utils.dates import as_utc, utc_now
from app.utils.validators import to_object_id

logger = logging.getLogger(__name__)


def build_entry(
    entry_type: str,
    amount: float,
    addon_ids: Iterable | None = None,
    payment_ref: str | None = None,
    order_ref: str | None = None,
    date: datetime | None = None,
) -> PaymentHistoryEntry:
    return PaymentHistoryEntry(
        type=entry_type,
        amount=amount,
        addonIds=list(addon_ids or []),
        paymentRef=payment_ref,
        orderRef=order_ref,
        date=date or utc_now(),
    )


def append(subscription: Subscription, entry: PaymentHistoryEntry) -> PaymentHistoryEntry:
    subscription.paymentHistory.append(entry)
    return entry


def entries(
    subscription: Subscription, entry_type: str | None = None
) -> list[PaymentHistoryEntry]:
    """Entries in the order they were written, optionally of one type."""
    return [
        entry
        for entry in subscription.paymentHistory
        if entry_type is None or entry.type == entry_type
    ]


def recognized_amounts(
    subscription: Subscription,
) -> list[tuple[PaymentHistoryEntry, float]]:
    """
    Each entry with the amount it contributes to revenue.

    Upgrade entries carry the new plan amount; only the difference over the
    plan amount paid before them counts, never less than zero.
    """
    last_plan_amount = 0.0
    recognized = []
    for entry in subscription.paymentHistory:
        amount = entry.amount
        if entry.type == PaymentType.PURCHASE:
            last_plan_amount = entry.amount
        elif entry.type == PaymentType.UPGRADE:
            amount = max(0.0, entry.amount - last_plan_amount)
            last_plan_amount = entry.amount
        recognized.append((entry, amount))
    return recognized


def revenue_split(subscription: Subscription) -> tuple[float, float]:
    """(plan revenue, add-on revenue) of one subscription."""
    plan_revenue = 0.0
    addon_revenue = 0.0
    for entry, amount in recognized_amounts(subscription):
        if entry.type == PaymentType.ADDON_PURCHASE:
            addon_revenue += amount
        else:
            plan_revenue += amount
    return round(plan_revenue, 2), round(addon_revenue, 2)


def total_paid(subscription: Subscription) -> float:
    return round(sum(revenue_split(subscription)), 2)


def summarize(subscription: Subscription) -> LedgerSummary:
    totals: dict[str, float] = {}
    for entry in subscription.paymentHistory:
        totals[entry.type] = round(totals.get(entry.type, 0.0) + entry.amount, 2)

    last = max(
        (as_utc(entry.date) for entry in subscription.paymentHistory), default=None
    )
    plan_revenue, addon_revenue = revenue_split(subscription)
    return LedgerSummary(
        subscriptionId=str(subscription.id),
        currency=subscription.currency,
        entryCount=len(subscription.paymentHistory),
        totalPaid=round(plan_revenue + addon_revenue, 2),
        planRevenue=plan_revenue,
        addonRevenue=addon_revenue,
        totalsByType=totals,
        lastPaymentDate=last,
    )


class PaymentLedgerService:
    """Read side of the ledger across a user's subscriptions."""

    def __init__(self, db):
        self.db = db

    async def get_user_payment_history(self, user_id: str) -> list[PaymentHistoryItem]:
        """All ledger entries of a user, newest first."""
        try:
            user_oid = to_object_id(user_id)
            if user_oid is None:
                return []

            subscriptions = await Subscription.find({"userId": user_oid}).to_list()

            items = [
                PaymentHistoryItem(
                    subscriptionId=str(subscription.id),
                    planName=subscription.planSnapshot.name
                    if subscription.planSnapshot
                    else None,
                    type=entry.type,
                    amount=entry.amount,
                    addonIds=[str(a) for a in entry.addonIds],
                    paymentRef=entry.paymentRef,
                    orderRef=entry.orderRef,
                    date=entry.date,
                )
                for subscription in subscriptions
                for entry in subscription.paymentHistory
            ]
            items.sort(key=lambda item: as_utc(item.date), reverse=True)

            logger.info(
                "Payment history retrieved",
                extra={"user_id": user_id, "entry_count": len(items)},
            )
            return items

        except Exception as e:
            logger.error(
                "Error retrieving payment history",
                extra={"user_id": user_id, "error": str(e)},
                exc_info=True,
            )
            raise

    async def get_revenue_stats(self, now: datetime | None = None) -> RevenueStats:
        """Revenue across all subscriptions, split into plan and add-on revenue."""
        now = now or utc_now()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        try:
            subscriptions = await Subscription.find(
                {"paymentHistory.0": {"$exists": True}}
            ).to_list()

            plan_total = 0.0
            addon_total = 0.0
            monthly = 0.0
            by_status = {status: 0.0 for status in SubscriptionStatus.ALL}
            for subscription in subscriptions:
                plan_revenue, addon_revenue = revenue_split(subscription)
                plan_total += plan_revenue
                addon_total += addon_revenue
                by_status[subscription.status] = round(
                    by_status.get(subscription.status, 0.0) + plan_revenue, 2
                )
                monthly += sum(
                    amount
                    for entry, amount in recognized_amounts(subscription)
                    if as_utc(entry.date) >= month_start
                )

            stats = RevenueStats(
                subscriptionCount=len(subscriptions),
                totalPaidRevenue=round(plan_total, 2),
                addonPaidRevenue=round(addon_total, 2),
                grandTotalRevenue=round(plan_total + addon_total, 2),
                monthlyPaidRevenue=round(monthly, 2),
                revenueByStatus=by_status,
            )
            logger.info(
                "Revenue statistics computed",
                extra={
                    "subscription_count": stats.subscriptionCount,
                    "grand_total": stats.grandTotalRevenue,
                },
            )
            return stats

        except Exception as e:
            logger.error(
                "Error computing revenue statistics",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise
