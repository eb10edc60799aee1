"""Maintenance passes over the subscriptions collection."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from app.core.exceptions import InvalidTransitionException
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_event import SubscriptionEventType
from app.schemas.subscription import (
    BackfillReport,
    InvalidSubscription,
    ReconciliationReport,
)
from app.services import subscription_lifecycle as lifecycle
from app.services.snapshot_service import build_plan_snapshot
from app.services.subscription_service import SUPERSEDED_REASON, SubscriptionService
from app.utils.dates import utc_now

logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(self, db):
        self.db = db
        self.subscription_service = SubscriptionService(db)
        self.plan_service = self.subscription_service.plan_service
        self.event_service = self.subscription_service.event_service

    async def reconcile_active_subscriptions(self) -> ReconciliationReport:
        """
        Keep at most one active subscription per user.

        For every user with several, the most recently created one stays and
        the rest are cancelled as superseded.
        """
        report = ReconciliationReport()
        try:
            duplicates = await Subscription.aggregate(
                [
                    {"$match": {"status": SubscriptionStatus.ACTIVE}},
                    {"$group": {"_id": "$userId", "count": {"$sum": 1}}},
                    {"$match": {"count": {"$gt": 1}}},
                ]
            ).to_list()
            report.usersChecked = len(duplicates)

            for row in duplicates:
                active = (
                    await Subscription.find(
                        {"userId": row["_id"], "status": SubscriptionStatus.ACTIVE}
                    )
                    .sort("-createdAt")
                    .to_list()
                )
                for stale in active[1:]:
                    try:
                        result = await self.subscription_service.cancel(
                            str(stale.id), SUPERSEDED_REASON
                        )
                    except InvalidTransitionException:
                        # Expired in the meantime; no longer counts as active
                        continue
                    if result.status == SubscriptionStatus.CANCELLED:
                        report.duplicatesCancelled += 1
                        report.cancelledSubscriptionIds.append(str(stale.id))

            logger.info(
                "Active subscription reconciliation finished",
                extra={
                    "users_checked": report.usersChecked,
                    "duplicates_cancelled": report.duplicatesCancelled,
                },
            )
            return report

        except Exception as e:
            logger.error(
                "Error reconciling active subscriptions",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise

    async def backfill_plan_snapshots(self) -> BackfillReport:
        """Snapshot the current plan into subscriptions that never got one."""
        report = BackfillReport()
        missing = await Subscription.find({"planSnapshot": None}).to_list()
        plans = {}

        for subscription in missing:
            try:
                key = str(subscription.planId)
                if key not in plans:
                    plans[key] = await self.plan_service.get_plan_by_id(key)
                plan = plans[key]
                if plan is None:
                    report.skipped += 1
                    continue

                snapshot = build_plan_snapshot(plan)
                _, changed, _ = await self.subscription_service.apply_transition(
                    subscription.id,
                    "backfill_plan_snapshot",
                    lambda s: lifecycle.backfill_plan_snapshot(s, snapshot),
                    subscription=subscription,
                )
                if changed:
                    report.updated += 1
                else:
                    report.skipped += 1

            except Exception as e:
                report.errors += 1
                logger.error(
                    "Error backfilling plan snapshot",
                    extra={"subscription_id": str(subscription.id), "error": str(e)},
                    exc_info=True,
                )

        logger.info("Plan snapshot backfill finished", extra=report.model_dump())
        return report

    async def find_invalid_subscriptions(self) -> list[InvalidSubscription]:
        """Dry run: subscriptions whose plan reference no longer resolves."""
        subscriptions = await Subscription.find({}).to_list()
        exists: dict[str, bool] = {}
        invalid = []

        for subscription in subscriptions:
            key = str(subscription.planId)
            if key not in exists:
                exists[key] = await self.plan_service.get_plan_by_id(key) is not None
            if not exists[key]:
                invalid.append(
                    InvalidSubscription(
                        subscriptionId=str(subscription.id),
                        userId=str(subscription.userId),
                        planId=key,
                        status=subscription.status,
                        hasSnapshot=subscription.planSnapshot is not None,
                    )
                )

        logger.info(
            "Invalid subscription scan finished",
            extra={"scanned": len(subscriptions), "invalid": len(invalid)},
        )
        return invalid

    async def notify_expiring_subscriptions(
        self, days: int, now: datetime | None = None
    ) -> int:
        """Record one expiring_soon event per subscription and end date."""
        now = now or utc_now()
        expiring = await Subscription.find(
            {
                "status": SubscriptionStatus.ACTIVE,
                "endDate": {"$gt": now, "$lte": now + timedelta(days=days)},
            }
        ).to_list()

        recorded = 0
        for subscription in expiring:
            if await self.event_service.has_expiring_soon_event(subscription):
                continue
            event = await self.event_service.record(
                subscription,
                SubscriptionEventType.EXPIRING_SOON,
                {"daysRemaining": subscription.days_remaining(now)},
            )
            if event is not None:
                recorded += 1

        logger.info(
            "Expiring-soon notifications recorded",
            extra={"candidates": len(expiring), "recorded": recorded},
        )
        return recorded
