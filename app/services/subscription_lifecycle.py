"""
Subscription state machine.

Plain functions over an in-memory ``Subscription``. Every function validates
before it touches the document, so a raised exception leaves the subscription
exactly as it was. Persistence and concurrency live in SubscriptionService.

    pending --activate--> active --expire--> expired
       |                    |                   |
       +------cancel--------+--cancel--> cancelled
                            ^                   |
                            +------renew--------+ (from active or expired)
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime
from typing import get_args

from app.core.config import settings
from app.core.exceptions import InvalidTransitionException, ValidationException
from app.models.plan import Plan
from app.models.subscription import (
    AddonDetail,
    AddonSnapshot,
    PaymentMethod,
    PaymentType,
    PlanSnapshot,
    Subscription,
    SubscriptionCurrency,
    SubscriptionStatus,
)
from app.services import payment_ledger
from app.utils.dates import add_days, add_months, as_utc, utc_now
from app.utils.validators import is_blank, to_object_id

PAYMENT_METHODS: tuple[str, ...] = get_args(PaymentMethod)
CURRENCIES: tuple[str, ...] = get_args(SubscriptionCurrency)

ACTIVATABLE = (SubscriptionStatus.PENDING,)
RENEWABLE = (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED)
CANCELLABLE = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING)
ADDON_ATTACHABLE = (SubscriptionStatus.ACTIVE,)
UPGRADABLE = (SubscriptionStatus.ACTIVE,)


def _require_status(
    subscription: Subscription, operation: str, allowed: tuple[str, ...]
) -> None:
    if subscription.status not in allowed:
        raise InvalidTransitionException(operation, subscription.status, allowed)


def _validate_amount(amount, field: str = "amount") -> float:
    if isinstance(amount, bool) or not isinstance(amount, int | float):
        raise ValidationException(f"{field} must be a number", details={field: amount})
    if math.isnan(amount) or amount < 0:
        raise ValidationException(
            f"{field} must be zero or greater", details={field: amount}
        )
    return float(amount)


def _validate_reference(value, field: str) -> str:
    if is_blank(value):
        raise ValidationException(f"{field} is required", details={"field": field})
    return str(value).strip()


def plan_term_months(plan: Plan) -> int:
    """Length of one paid term of a plan, in months."""
    if plan.billingPeriod == "lifetime":
        return settings.LIFETIME_PLAN_MONTHS
    if plan.billingPeriod == "yearly":
        return 12 * plan.billingCycleMonths
    return plan.billingCycleMonths


def compute_end_date(
    start: datetime,
    plan: Plan | None = None,
    billing_cycle_months: int | None = None,
) -> datetime:
    """
    End of the first term.

    Caller-supplied months win, then the plan's billing period, then the
    default duration in days.
    """
    if billing_cycle_months is not None:
        if billing_cycle_months < 1:
            raise ValidationException(
                "billingCycleMonths must be at least 1",
                details={"billingCycleMonths": billing_cycle_months},
            )
        return add_months(start, billing_cycle_months)
    if plan is not None:
        return add_months(start, plan_term_months(plan))
    return add_days(start, settings.DEFAULT_SUBSCRIPTION_DAYS)


def create_pending(
    user_id,
    plan_id,
    amount,
    payment_method: str,
    end_date: datetime,
    now: datetime | None = None,
    currency: str | None = None,
    addon_ids: Iterable = (),
    auto_renew: bool = False,
) -> Subscription:
    """Build a new pending subscription. Nothing is written."""
    now = now or utc_now()

    if is_blank(user_id):
        raise ValidationException("userId is required", details={"field": "userId"})
    if is_blank(plan_id):
        raise ValidationException("planId is required", details={"field": "planId"})
    user_oid = to_object_id(user_id)
    if user_oid is None:
        raise ValidationException("userId is not a valid id", details={"userId": str(user_id)})
    plan_oid = to_object_id(plan_id)
    if plan_oid is None:
        raise ValidationException("planId is not a valid id", details={"planId": str(plan_id)})

    amount = _validate_amount(amount)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationException(
            "Unsupported payment method",
            details={"paymentMethod": payment_method, "allowed": list(PAYMENT_METHODS)},
        )
    currency = currency or "INR"
    if currency not in CURRENCIES:
        raise ValidationException(
            "Unsupported currency",
            details={"currency": currency, "allowed": list(CURRENCIES)},
        )

    addon_oids = []
    for addon_id in addon_ids:
        addon_oid = to_object_id(addon_id)
        if addon_oid is None:
            raise ValidationException(
                "addonId is not a valid id", details={"addonId": str(addon_id)}
            )
        if addon_oid not in addon_oids:
            addon_oids.append(addon_oid)

    if as_utc(end_date) <= now:
        raise ValidationException(
            "endDate must be after startDate",
            details={"startDate": now.isoformat(), "endDate": end_date.isoformat()},
        )

    return Subscription(
        userId=user_oid,
        planId=plan_oid,
        addonIds=addon_oids,
        status=SubscriptionStatus.PENDING,
        startDate=now,
        endDate=end_date,
        amount=amount,
        currency=currency,
        paymentMethod=payment_method,
        autoRenew=auto_renew,
    )


def activate(
    subscription: Subscription,
    transaction_ref: str,
    plan_snapshot: PlanSnapshot | None = None,
    addon_snapshots: Iterable[AddonSnapshot] = (),
    addon_cycles: dict | None = None,
    amount: float | None = None,
    order_ref: str | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    pending -> active.

    Fills in the plan snapshot if the subscription has none yet and attaches
    the add-ons chosen at checkout. Appends one purchase entry.
    """
    now = now or utc_now()
    _require_status(subscription, "activate", ACTIVATABLE)
    transaction_ref = _validate_reference(transaction_ref, "transactionRef")
    if amount is not None:
        amount = _validate_amount(amount)

    subscription.status = SubscriptionStatus.ACTIVE
    subscription.lastPaymentDate = now
    subscription.transactionId = transaction_ref
    if amount is not None:
        subscription.amount = amount
    if subscription.planSnapshot is None and plan_snapshot is not None:
        subscription.planSnapshot = plan_snapshot

    # Add-ons chosen at checkout get their own activity window
    requested = list(subscription.addonIds)
    subscription.addonIds = []
    snapshots = {snapshot.addonId: snapshot for snapshot in addon_snapshots}
    for addon_oid in requested:
        snapshot = snapshots.get(addon_oid)
        if snapshot is None:
            continue
        _attach(subscription, snapshot, (addon_cycles or {}).get(addon_oid), now)

    if subscription.autoRenew:
        subscription.nextBillingDate = subscription.endDate

    payment_ledger.append(
        subscription,
        payment_ledger.build_entry(
            PaymentType.PURCHASE,
            subscription.amount,
            addon_ids=subscription.addonIds,
            payment_ref=transaction_ref,
            order_ref=order_ref,
            date=now,
        ),
    )
    return subscription


def renew(
    subscription: Subscription,
    new_end_date: datetime,
    transaction_ref: str,
    amount: float | None = None,
    plan_id=None,
    plan_snapshot: PlanSnapshot | None = None,
    now: datetime | None = None,
) -> Subscription:
    """
    {active, expired} -> active with a later endDate.

    When a new plan snapshot is given the subscription is re-snapshotted
    against that plan; otherwise the existing snapshot is kept.
    """
    now = now or utc_now()
    _require_status(subscription, "renew", RENEWABLE)
    transaction_ref = _validate_reference(transaction_ref, "transactionRef")
    new_end_date = as_utc(new_end_date)
    if new_end_date is None or new_end_date <= as_utc(subscription.endDate):
        raise ValidationException(
            "newEndDate must be after the current endDate",
            details={
                "endDate": as_utc(subscription.endDate).isoformat(),
                "newEndDate": new_end_date.isoformat() if new_end_date else None,
            },
        )
    amount = subscription.amount if amount is None else _validate_amount(amount)
    if plan_snapshot is not None and plan_id is None:
        raise ValidationException("planId is required to re-snapshot", details={"field": "planId"})

    subscription.endDate = new_end_date
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.lastPaymentDate = now
    subscription.transactionId = transaction_ref
    subscription.renewalAttempts = 0
    subscription.amount = amount
    if subscription.autoRenew:
        subscription.nextBillingDate = new_end_date
    if plan_snapshot is not None:
        subscription.planId = to_object_id(plan_id)
        subscription.planSnapshot = plan_snapshot

    payment_ledger.append(
        subscription,
        payment_ledger.build_entry(
            PaymentType.RENEWAL, amount, payment_ref=transaction_ref, date=now
        ),
    )
    return subscription


def cancel(
    subscription: Subscription, reason: str | None, now: datetime | None = None
) -> bool:
    """
    {active, pending} -> cancelled.

    Returns False when the subscription was already cancelled; that call is
    a successful no-op and leaves cancelledAt untouched.
    """
    if subscription.status == SubscriptionStatus.CANCELLED:
        return False
    _require_status(subscription, "cancel", CANCELLABLE)
    now = now or utc_now()

    subscription.status = SubscriptionStatus.CANCELLED
    subscription.autoRenew = False
    subscription.nextBillingDate = None
    subscription.cancellationReason = reason
    subscription.cancelledAt = now
    deactivate_addons(subscription)
    return True


def expire(subscription: Subscription, now: datetime | None = None) -> bool:
    """active with endDate <= now -> expired. Anything else is left alone."""
    now = now or utc_now()
    if subscription.status != SubscriptionStatus.ACTIVE:
        return False
    if as_utc(subscription.endDate) > now:
        return False
    subscription.status = SubscriptionStatus.EXPIRED
    subscription.nextBillingDate = None
    return True


def _attach(
    subscription: Subscription,
    snapshot: AddonSnapshot,
    billing_cycle_months: int | None,
    now: datetime,
) -> AddonDetail:
    expiry = add_months(now, billing_cycle_months) if billing_cycle_months else None
    detail = AddonDetail(
        addonId=snapshot.addonId,
        purchaseDate=now,
        expiryDate=expiry,
        isActive=True,
        billingCycleMonths=billing_cycle_months,
    )
    if snapshot.addonId not in subscription.addonIds:
        subscription.addonIds.append(snapshot.addonId)
    subscription.addonDetails.append(detail)
    subscription.addonsSnapshot.append(snapshot)
    return detail


def attach_addon(
    subscription: Subscription,
    snapshot: AddonSnapshot,
    billing_cycle_months: int | None,
    amount: float | None = None,
    payment_ref: str | None = None,
    now: datetime | None = None,
) -> AddonDetail:
    """
    Attach a purchased add-on to an active subscription.

    ``billing_cycle_months`` None means the add-on never expires on its own
    (one-time purchases). Appends one addon_purchase entry.
    """
    now = now or utc_now()
    _require_status(subscription, "attach an add-on to", ADDON_ATTACHABLE)
    if billing_cycle_months is not None and billing_cycle_months < 1:
        raise ValidationException(
            "billingCycleMonths must be at least 1",
            details={"billingCycleMonths": billing_cycle_months},
        )
    if any(
        detail.addonId == snapshot.addonId and detail.is_effective(now)
        for detail in subscription.addonDetails
    ):
        raise ValidationException(
            "Add-on is already active on this subscription",
            details={"addonId": str(snapshot.addonId)},
        )
    amount = snapshot.price if amount is None else _validate_amount(amount)

    detail = _attach(subscription, snapshot, billing_cycle_months, now)
    payment_ledger.append(
        subscription,
        payment_ledger.build_entry(
            PaymentType.ADDON_PURCHASE,
            amount,
            addon_ids=[snapshot.addonId],
            payment_ref=payment_ref,
            date=now,
        ),
    )
    return detail


def upgrade(
    subscription: Subscription,
    plan: Plan,
    plan_snapshot: PlanSnapshot,
    transaction_ref: str | None = None,
    amount: float | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Move an active subscription to a strictly more expensive plan."""
    now = now or utc_now()
    _require_status(subscription, "upgrade", UPGRADABLE)
    if plan.id == subscription.planId:
        raise ValidationException(
            "Subscription is already on this plan", details={"planId": str(plan.id)}
        )
    current_price = (
        subscription.planSnapshot.price
        if subscription.planSnapshot
        else subscription.amount
    )
    if plan.price <= current_price:
        raise ValidationException(
            "Upgrade requires a higher-priced plan",
            details={"currentPrice": current_price, "newPrice": plan.price},
        )
    amount = plan.price if amount is None else _validate_amount(amount)

    subscription.planId = plan.id
    subscription.planSnapshot = plan_snapshot
    subscription.amount = plan.price
    subscription.lastPaymentDate = now
    if transaction_ref:
        subscription.transactionId = transaction_ref

    payment_ledger.append(
        subscription,
        payment_ledger.build_entry(
            PaymentType.UPGRADE, amount, payment_ref=transaction_ref, date=now
        ),
    )
    return subscription


def deactivate_addons(subscription: Subscription) -> int:
    count = 0
    for detail in subscription.addonDetails:
        if detail.isActive:
            detail.isActive = False
            count += 1
    return count


def deactivate_expired_addons(
    subscription: Subscription, now: datetime | None = None
) -> int:
    """Switch off add-ons whose own window has closed. Returns how many changed."""
    now = now or utc_now()
    count = 0
    for detail in subscription.addonDetails:
        if detail.isActive and detail.expiryDate and as_utc(detail.expiryDate) <= now:
            detail.isActive = False
            count += 1
    return count


def backfill_plan_snapshot(subscription: Subscription, plan_snapshot: PlanSnapshot) -> bool:
    """Give a snapshot-less subscription its first snapshot. Never overwrites."""
    if subscription.planSnapshot is not None:
        return False
    subscription.planSnapshot = plan_snapshot
    return True
