from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from beanie.exceptions import RevisionIdWasChanged
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.core.exceptions import (
    ConcurrentModificationException,
    InvalidTransitionException,
    NotFoundException,
    UnresolvedReferenceException,
    ValidationException,
)
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_event import SubscriptionEventType
from app.schemas.subscription import ExpirySweepReport, SubscriptionStats
from app.services import subscription_lifecycle as lifecycle
from app.services.addon_service import AddonService
from app.services.plan_service import PlanService
from app.services.snapshot_service import (
    SnapshotService,
    build_addons_snapshot,
    build_plan_snapshot,
)
from app.services.subscription_event_service import SubscriptionEventService
from app.utils.dates import utc_now
from app.utils.validators import to_object_id

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3
SUPERSEDED_REASON = "superseded"


class SubscriptionService:
    """
    Persists lifecycle transitions.

    Every write is a revision-guarded replace of a copy of the loaded
    document. When another writer got there first the operation reloads and
    re-applies; if the fresh state no longer allows it, the call is a no-op
    that returns what is persisted.
    """

    def __init__(self, db):
        self.db = db
        self.plan_service = PlanService(db)
        self.addon_service = AddonService(db)
        self.snapshot_service = SnapshotService(db)
        self.event_service = SubscriptionEventService(db)

    async def _load(self, subscription_id) -> Subscription:
        oid = to_object_id(subscription_id)
        subscription = await Subscription.get(oid) if oid else None
        if not subscription:
            raise NotFoundException(
                resource="Subscription", resource_id=str(subscription_id)
            )
        return subscription

    async def _replace(self, subscription: Subscription) -> None:
        try:
            await subscription.replace()
        except RevisionIdWasChanged as e:
            raise ConcurrentModificationException(
                "Subscription", str(subscription.id)
            ) from e
        except DuplicateKeyError as e:
            # transactionId is unique across subscriptions
            raise ValidationException(
                "Payment reference is already used by another subscription",
                details={"transactionId": subscription.transactionId},
            ) from e

    async def apply_transition(
        self,
        subscription_id,
        operation: str,
        mutate: Callable[[Subscription], Any],
        subscription: Subscription | None = None,
    ) -> tuple[Subscription, bool, Any]:
        """
        Run ``mutate`` on a copy of the subscription and write it back.

        ``mutate`` returning False means nothing changed and nothing is written.
        Returns (persisted subscription, whether this call changed it, result).
        """
        current = subscription or await self._load(subscription_id)
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            candidate = current.model_copy(deep=True)
            try:
                result = mutate(candidate)
            except (InvalidTransitionException, ValidationException):
                if attempt == 1:
                    raise
                # The winning writer moved the subscription on; nothing left to do
                logger.info(
                    "Lost race, operation no longer applicable",
                    extra={"subscription_id": str(current.id), "operation": operation},
                )
                return current, False, None

            if result is False:
                return current, False, result

            try:
                await self._replace(candidate)
                return candidate, True, result
            except ConcurrentModificationException as e:
                logger.warning(
                    "Concurrent modification detected, reloading",
                    extra={
                        "subscription_id": str(current.id),
                        "operation": operation,
                        "attempt": attempt,
                        "error_code": e.error_code,
                    },
                )
                current = await self._load(current.id)

        logger.warning(
            "Giving up after repeated concurrent modifications",
            extra={"subscription_id": str(current.id), "operation": operation},
        )
        return current, False, None

    async def create_pending(
        self,
        user_id: str,
        plan_id: str,
        amount: float,
        payment_method: str,
        currency: str | None = None,
        billing_cycle_months: int | None = None,
        addon_ids: list[str] | tuple = (),
        auto_renew: bool = False,
    ) -> Subscription:
        """Start a checkout: a pending subscription for the given plan."""
        try:
            now = utc_now()
            plan = await self.plan_service.get_plan_by_id(plan_id) if plan_id else None
            if plan_id and plan is None:
                logger.warning(
                    "Plan not found for pending subscription, using default duration",
                    extra={"plan_id": str(plan_id)},
                )
            if currency is None and plan is not None and plan.currency in lifecycle.CURRENCIES:
                currency = plan.currency

            end_date = lifecycle.compute_end_date(now, plan, billing_cycle_months)
            subscription = lifecycle.create_pending(
                user_id,
                plan_id,
                amount,
                payment_method,
                end_date,
                now=now,
                currency=currency,
                addon_ids=addon_ids,
                auto_renew=auto_renew,
            )
            await subscription.insert()

            logger.info(
                "Pending subscription created",
                extra={
                    "subscription_id": str(subscription.id),
                    "user_id": str(user_id),
                    "plan_id": str(plan_id),
                },
            )
            return subscription

        except ValidationException:
            raise
        except Exception as e:
            logger.error(
                "Error creating pending subscription",
                extra={"user_id": str(user_id), "plan_id": str(plan_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def activate(
        self,
        subscription_id: str,
        transaction_ref: str,
        amount: float | None = None,
        order_ref: str | None = None,
    ) -> Subscription:
        """
        Activate a pending subscription after a verified payment.

        Not idempotent: a second call raises InvalidTransitionException.
        """
        try:
            subscription = await self._load(subscription_id)
            if subscription.status != SubscriptionStatus.PENDING:
                raise InvalidTransitionException(
                    "activate", subscription.status, lifecycle.ACTIVATABLE
                )

            plan_snapshot = None
            if subscription.planSnapshot is None:
                plan_snapshot = await self.snapshot_service.snapshot_plan(
                    subscription.planId
                )
            addons = await self.snapshot_service.resolve_addons(subscription.addonIds)
            addon_snapshots = build_addons_snapshot(addons)
            addon_cycles = {addon.id: addon.billingCycleMonths for addon in addons}

            activated, changed, _ = await self.apply_transition(
                subscription_id,
                "activate",
                lambda s: lifecycle.activate(
                    s,
                    transaction_ref,
                    plan_snapshot=plan_snapshot,
                    addon_snapshots=addon_snapshots,
                    addon_cycles=addon_cycles,
                    amount=amount,
                    order_ref=order_ref,
                ),
                subscription=subscription,
            )
            if not changed:
                return activated

            logger.info(
                "Subscription activated",
                extra={
                    "subscription_id": str(activated.id),
                    "user_id": str(activated.userId),
                    "has_snapshot": activated.planSnapshot is not None,
                },
            )
            await self.event_service.record(
                activated,
                SubscriptionEventType.ACTIVATED,
                {"transactionId": activated.transactionId, "amount": activated.amount},
            )
            if settings.SUPERSEDE_ACTIVE_ON_ACTIVATION:
                await self.supersede_other_active(activated)
            return activated

        except (NotFoundException, ValidationException, InvalidTransitionException):
            raise
        except Exception as e:
            logger.error(
                "Error activating subscription",
                extra={"subscription_id": str(subscription_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def supersede_other_active(self, keep: Subscription) -> list[Subscription]:
        """Cancel every other active subscription of the same user."""
        others = await Subscription.find(
            {
                "userId": keep.userId,
                "status": SubscriptionStatus.ACTIVE,
                "_id": {"$ne": keep.id},
            }
        ).to_list()

        cancelled = []
        for other in others:
            result, changed, _ = await self.apply_transition(
                other.id,
                "supersede",
                lambda s: lifecycle.cancel(s, SUPERSEDED_REASON),
                subscription=other,
            )
            if changed:
                cancelled.append(result)
                await self.event_service.record(
                    result,
                    SubscriptionEventType.CANCELLED,
                    {"reason": SUPERSEDED_REASON, "supersededBy": str(keep.id)},
                )
        if cancelled:
            logger.info(
                "Superseded active subscriptions",
                extra={
                    "user_id": str(keep.userId),
                    "kept_subscription_id": str(keep.id),
                    "cancelled_count": len(cancelled),
                },
            )
        return cancelled

    async def renew(
        self,
        subscription_id: str,
        new_end_date: datetime,
        transaction_ref: str,
        amount: float | None = None,
        new_plan_id: str | None = None,
    ) -> Subscription:
        try:
            plan_snapshot = None
            if new_plan_id:
                plan = await self.plan_service.require_plan(new_plan_id)
                plan_snapshot = build_plan_snapshot(plan)

            renewed, changed, _ = await self.apply_transition(
                subscription_id,
                "renew",
                lambda s: lifecycle.renew(
                    s,
                    new_end_date,
                    transaction_ref,
                    amount=amount,
                    plan_id=new_plan_id,
                    plan_snapshot=plan_snapshot,
                ),
            )
            if changed:
                logger.info(
                    "Subscription renewed",
                    extra={
                        "subscription_id": str(renewed.id),
                        "end_date": renewed.endDate.isoformat(),
                        "resnapshotted": plan_snapshot is not None,
                    },
                )
                await self.event_service.record(
                    renewed,
                    SubscriptionEventType.RENEWED,
                    {"transactionId": renewed.transactionId},
                )
            return renewed

        except (
            NotFoundException,
            ValidationException,
            InvalidTransitionException,
            UnresolvedReferenceException,
        ):
            raise
        except Exception as e:
            logger.error(
                "Error renewing subscription",
                extra={"subscription_id": str(subscription_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def cancel(self, subscription_id: str, reason: str | None) -> Subscription:
        """Cancel an active or pending subscription. Already cancelled is a no-op."""
        try:
            cancelled, changed, _ = await self.apply_transition(
                subscription_id, "cancel", lambda s: lifecycle.cancel(s, reason)
            )
            if changed:
                logger.info(
                    "Subscription cancelled",
                    extra={"subscription_id": str(cancelled.id), "reason": reason},
                )
                await self.event_service.record(
                    cancelled, SubscriptionEventType.CANCELLED, {"reason": reason}
                )
            return cancelled

        except (NotFoundException, InvalidTransitionException):
            raise
        except Exception as e:
            logger.error(
                "Error cancelling subscription",
                extra={"subscription_id": str(subscription_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def expire(
        self,
        subscription_id: str,
        now: datetime | None = None,
        subscription: Subscription | None = None,
    ) -> Subscription:
        """Expire a subscription whose term has ended. Otherwise a no-op."""
        now = now or utc_now()
        expired, changed, _ = await self.apply_transition(
            subscription_id,
            "expire",
            lambda s: lifecycle.expire(s, now),
            subscription=subscription,
        )
        if changed:
            logger.info(
                "Subscription expired", extra={"subscription_id": str(expired.id)}
            )
            await self.event_service.record(expired, SubscriptionEventType.EXPIRED)
        return expired

    async def attach_addon(
        self,
        subscription_id: str,
        addon_id: str,
        billing_cycle_months: int | None = None,
        amount: float | None = None,
        payment_ref: str | None = None,
    ) -> Subscription:
        try:
            addon = await self.addon_service.require_addon(addon_id)
            if not addon.isActive:
                raise ValidationException(
                    "Add-on is not available for purchase",
                    details={"addonId": str(addon_id)},
                )
            snapshot = build_addons_snapshot([addon])[0]
            months = billing_cycle_months or addon.billingCycleMonths

            updated, changed, _ = await self.apply_transition(
                subscription_id,
                "attach_addon",
                lambda s: lifecycle.attach_addon(
                    s, snapshot, months, amount=amount, payment_ref=payment_ref
                ),
            )
            if changed:
                logger.info(
                    "Add-on attached",
                    extra={
                        "subscription_id": str(updated.id),
                        "addon_id": str(addon.id),
                        "billing_cycle_months": months,
                    },
                )
                await self.event_service.record(
                    updated,
                    SubscriptionEventType.ADDON_ATTACHED,
                    {"addonId": str(addon.id), "addonName": addon.name},
                )
            return updated

        except (
            NotFoundException,
            ValidationException,
            InvalidTransitionException,
            UnresolvedReferenceException,
        ):
            raise
        except Exception as e:
            logger.error(
                "Error attaching add-on",
                extra={
                    "subscription_id": str(subscription_id),
                    "addon_id": str(addon_id),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

    async def upgrade(
        self,
        subscription_id: str,
        new_plan_id: str,
        transaction_ref: str | None = None,
        amount: float | None = None,
    ) -> Subscription:
        try:
            plan = await self.plan_service.require_plan(new_plan_id)
            if not plan.isActive:
                raise ValidationException(
                    "Plan is not available", details={"planId": str(new_plan_id)}
                )
            plan_snapshot = build_plan_snapshot(plan)

            upgraded, changed, _ = await self.apply_transition(
                subscription_id,
                "upgrade",
                lambda s: lifecycle.upgrade(
                    s, plan, plan_snapshot, transaction_ref=transaction_ref, amount=amount
                ),
            )
            if changed:
                logger.info(
                    "Subscription upgraded",
                    extra={"subscription_id": str(upgraded.id), "plan_id": str(plan.id)},
                )
                await self.event_service.record(
                    upgraded,
                    SubscriptionEventType.UPGRADED,
                    {"planId": str(plan.id), "amount": upgraded.amount},
                )
            return upgraded

        except (
            NotFoundException,
            ValidationException,
            InvalidTransitionException,
            UnresolvedReferenceException,
        ):
            raise
        except Exception as e:
            logger.error(
                "Error upgrading subscription",
                extra={"subscription_id": str(subscription_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def deactivate_expired_addons(
        self,
        subscription_id: str,
        now: datetime | None = None,
        subscription: Subscription | None = None,
    ) -> int:
        now = now or utc_now()
        updated, changed, count = await self.apply_transition(
            subscription_id,
            "deactivate_expired_addons",
            lambda s: lifecycle.deactivate_expired_addons(s, now) or False,
            subscription=subscription,
        )
        if changed:
            logger.info(
                "Expired add-ons deactivated",
                extra={"subscription_id": str(updated.id), "count": count},
            )
            return count
        return 0

    async def expire_due_subscriptions(self, now: datetime | None = None) -> ExpirySweepReport:
        """Background sweep: expire ended terms and switch off lapsed add-ons."""
        now = now or utc_now()
        report = ExpirySweepReport()
        try:
            due = await Subscription.find(
                {"status": SubscriptionStatus.ACTIVE, "endDate": {"$lte": now}}
            ).to_list()
            report.checked = len(due)
            for subscription in due:
                result = await self.expire(subscription.id, now=now, subscription=subscription)
                if result.status == SubscriptionStatus.EXPIRED:
                    report.expired += 1

            lapsed = await Subscription.find(
                {
                    "status": SubscriptionStatus.ACTIVE,
                    "addonDetails": {
                        "$elemMatch": {"isActive": True, "expiryDate": {"$lte": now}}
                    },
                }
            ).to_list()
            for subscription in lapsed:
                report.addonsDeactivated += await self.deactivate_expired_addons(
                    subscription.id, now=now, subscription=subscription
                )

            logger.info("Expiry sweep finished", extra=report.model_dump())
            return report

        except Exception as e:
            logger.error(
                "Error during expiry sweep", extra={"error": str(e)}, exc_info=True
            )
            raise

    async def find_active_subscription(
        self, user_id: str, now: datetime | None = None
    ) -> Subscription | None:
        """Most recently created active subscription of a user whose term has not ended."""
        user_oid = to_object_id(user_id)
        if user_oid is None:
            return None
        now = now or utc_now()
        return (
            await Subscription.find(
                {
                    "userId": user_oid,
                    "status": SubscriptionStatus.ACTIVE,
                    "endDate": {"$gt": now},
                }
            )
            .sort("-createdAt")
            .first_or_none()
        )

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self._load(subscription_id)

    async def get_user_subscriptions(self, user_id: str) -> list[Subscription]:
        try:
            user_oid = to_object_id(user_id)
            if user_oid is None:
                return []
            return (
                await Subscription.find({"userId": user_oid}).sort("-createdAt").to_list()
            )
        except Exception as e:
            logger.error(
                "Error getting user subscriptions",
                extra={"user_id": user_id, "error": str(e)},
                exc_info=True,
            )
            raise

    async def list_subscriptions(
        self,
        status: str | None = None,
        user_id: str | None = None,
        plan_id: str | None = None,
        page: int = 1,
        size: int = 20,
    ) -> tuple[list[Subscription], int]:
        """Admin listing with filters. Returns (page of items, total matching)."""
        query: dict[str, Any] = {}
        if status:
            if status not in SubscriptionStatus.ALL:
                raise ValidationException(
                    "Unknown subscription status", details={"status": status}
                )
            query["status"] = status
        for field, value in (("userId", user_id), ("planId", plan_id)):
            if value:
                oid = to_object_id(value)
                if oid is None:
                    raise ValidationException(f"{field} is not a valid id", details={field: value})
                query[field] = oid

        total = await Subscription.find(query).count()
        items = (
            await Subscription.find(query)
            .sort("-createdAt")
            .skip((page - 1) * size)
            .limit(size)
            .to_list()
        )
        return items, total

    async def get_subscription_stats(self, now: datetime | None = None) -> SubscriptionStats:
        now = now or utc_now()
        by_status = {}
        for status in SubscriptionStatus.ALL:
            by_status[status] = await Subscription.find({"status": status}).count()
        active_within_term = await Subscription.find(
            {"status": SubscriptionStatus.ACTIVE, "endDate": {"$gt": now}}
        ).count()
        return SubscriptionStats(
            total=sum(by_status.values()),
            byStatus=by_status,
            activeWithinTerm=active_within_term,
        )
