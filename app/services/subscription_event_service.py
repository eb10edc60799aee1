from __future__ import annotations

import logging
from typing import Any

from app.core.exceptions import NotFoundException
from app.models.subscription import Subscription
from app.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from app.utils.dates import as_utc, utc_now
from app.utils.validators import to_object_id

logger = logging.getLogger(__name__)


class SubscriptionEventService:
    """Outbox of lifecycle events for the notification system."""

    def __init__(self, db):
        self.db = db

    async def record(
        self,
        subscription: Subscription,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> SubscriptionEvent | None:
        """
        Record a lifecycle event.

        Best effort: the transition it describes is already persisted, so a
        failure here is logged and swallowed.
        """
        try:
            event = SubscriptionEvent(
                subscriptionId=subscription.id,
                userId=subscription.userId,
                eventType=event_type,
                payload={
                    "status": subscription.status,
                    "endDate": as_utc(subscription.endDate),
                    "planName": subscription.planSnapshot.name
                    if subscription.planSnapshot
                    else None,
                    **(payload or {}),
                },
            )
            await event.insert()

            logger.info(
                "Subscription event recorded",
                extra={
                    "subscription_id": str(subscription.id),
                    "event_type": event_type,
                },
            )
            return event

        except Exception as e:
            logger.error(
                "Failed to record subscription event",
                extra={
                    "subscription_id": str(subscription.id),
                    "event_type": event_type,
                    "error": str(e),
                },
                exc_info=True,
            )
            return None

    async def has_expiring_soon_event(self, subscription: Subscription) -> bool:
        """Whether this subscription was already warned about its current endDate."""
        existing = await SubscriptionEvent.find_one(
            {
                "subscriptionId": subscription.id,
                "eventType": SubscriptionEventType.EXPIRING_SOON,
                "payload.endDate": as_utc(subscription.endDate),
            }
        )
        return existing is not None

    async def list_pending(self, limit: int = 100) -> list[SubscriptionEvent]:
        return (
            await SubscriptionEvent.find({"dispatched": False})
            .sort("createdAt")
            .limit(limit)
            .to_list()
        )

    async def mark_dispatched(self, event_id: str) -> SubscriptionEvent:
        try:
            oid = to_object_id(event_id)
            event = await SubscriptionEvent.get(oid) if oid else None
            if not event:
                raise NotFoundException(resource="Subscription event", resource_id=event_id)

            if not event.dispatched:
                event.dispatched = True
                event.dispatchedAt = utc_now()
                await event.save()
                logger.info("Subscription event dispatched", extra={"event_id": event_id})
            return event

        except NotFoundException:
            raise
        except Exception as e:
            logger.error(
                "Error marking event dispatched",
                extra={"event_id": event_id, "error": str(e)},
                exc_info=True,
            )
            raise
