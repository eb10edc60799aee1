from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from beanie import Document, Insert, before_event
from pydantic import Field

from app.utils.validators import PyObjectId


class SubscriptionEventType:
    """Lifecycle events handed to the notification system."""

    ACTIVATED = "activated"
    RENEWED = "renewed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    UPGRADED = "upgraded"
    ADDON_ATTACHED = "addon_attached"


class SubscriptionEvent(Document):
    """Outbox record. The notification system polls undispatched events."""

    subscriptionId: PyObjectId
    userId: PyObjectId
    eventType: str
    payload: dict[str, Any] = Field(default_factory=dict)
    dispatched: bool = False
    dispatchedAt: datetime | None = None
    createdAt: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @before_event([Insert])
    def set_created(self):
        if self.createdAt is None:
            self.createdAt = datetime.now(UTC)

    class Settings:
        name = "subscription_events"
        indexes = [
            [("dispatched", 1), ("createdAt", 1)],
            [("subscriptionId", 1), ("eventType", 1)],
        ]
