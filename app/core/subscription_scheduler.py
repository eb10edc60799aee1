"""Subscription maintenance scheduler using APScheduler."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import db
from app.services.reconciliation_service import ReconciliationService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class SubscriptionScheduler:
    """Runs the expiry sweep, expiring-soon notices and the reconciliation pass."""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None

    def start(self):
        """Start the scheduler."""
        if not settings.SUBSCRIPTION_SCHEDULER_ENABLED:
            logger.info("Subscription scheduler is disabled")
            return

        try:
            self.scheduler = AsyncIOScheduler(timezone="UTC")

            self.scheduler.add_job(
                func=self.expire_subscriptions_task,
                trigger=IntervalTrigger(minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES),
                id="expire_subscriptions",
                name="Expire ended subscriptions",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.add_job(
                func=self.notify_expiring_task,
                trigger=CronTrigger(
                    hour=settings.EXPIRING_SOON_SCHEDULE_HOUR, minute=0, timezone="UTC"
                ),
                id="notify_expiring_subscriptions",
                name="Record expiring-soon events",
                replace_existing=True,
            )
            self.scheduler.add_job(
                func=self.reconcile_task,
                trigger=CronTrigger(
                    hour=settings.RECONCILIATION_SCHEDULE_HOUR,
                    minute=settings.RECONCILIATION_SCHEDULE_MINUTE,
                    timezone="UTC",
                ),
                id="reconcile_active_subscriptions",
                name="Cancel duplicate active subscriptions",
                replace_existing=True,
            )

            self.scheduler.start()
            logger.info(
                "Subscription scheduler started",
                extra={
                    "sweep_interval_minutes": settings.EXPIRY_SWEEP_INTERVAL_MINUTES,
                    "expiring_soon_hour": settings.EXPIRING_SOON_SCHEDULE_HOUR,
                    "reconciliation_hour": settings.RECONCILIATION_SCHEDULE_HOUR,
                },
            )

        except Exception as e:
            logger.error(
                "Failed to start subscription scheduler",
                extra={"error": str(e)},
                exc_info=True,
            )

    def shutdown(self):
        if self.scheduler:
            try:
                self.scheduler.shutdown()
                logger.info("Subscription scheduler shut down")
            except Exception as e:
                logger.error(
                    "Error shutting down subscription scheduler",
                    extra={"error": str(e)},
                    exc_info=True,
                )

    async def expire_subscriptions_task(self):
        try:
            report = await SubscriptionService(db.database).expire_due_subscriptions()
            logger.info("Expiry sweep task completed", extra=report.model_dump())
        except Exception as e:
            logger.error(
                "Error in expiry sweep task", extra={"error": str(e)}, exc_info=True
            )

    async def notify_expiring_task(self):
        try:
            recorded = await ReconciliationService(
                db.database
            ).notify_expiring_subscriptions(settings.EXPIRING_SOON_DAYS)
            logger.info("Expiring-soon task completed", extra={"recorded": recorded})
        except Exception as e:
            logger.error(
                "Error in expiring-soon task", extra={"error": str(e)}, exc_info=True
            )

    async def reconcile_task(self):
        try:
            report = await ReconciliationService(
                db.database
            ).reconcile_active_subscriptions()
            logger.info(
                "Reconciliation task completed",
                extra={"duplicates_cancelled": report.duplicatesCancelled},
            )
        except Exception as e:
            logger.error(
                "Error in reconciliation task", extra={"error": str(e)}, exc_info=True
            )


# Global scheduler instance
subscription_scheduler = SubscriptionScheduler()
