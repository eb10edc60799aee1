"""Test cases for the subscription event outbox."""

from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId

from app.core.exceptions import NotFoundException
from app.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from app.services.subscription_event_service import SubscriptionEventService


class TestRecord:
    @pytest.mark.asyncio
    async def test_record_builds_payload(self, active_subscription):
        with patch.object(SubscriptionEvent, "insert", new=AsyncMock()) as mock_insert:
            event = await SubscriptionEventService(None).record(
                active_subscription,
                SubscriptionEventType.CANCELLED,
                {"reason": "moving"},
            )

        mock_insert.assert_awaited_once()
        assert event.subscriptionId == active_subscription.id
        assert event.userId == active_subscription.userId
        assert event.eventType == "cancelled"
        assert event.dispatched is False
        assert event.payload["reason"] == "moving"
        assert event.payload["planName"] == "Premium"
        assert event.payload["status"] == active_subscription.status

    @pytest.mark.asyncio
    async def test_record_failure_is_swallowed(self, active_subscription):
        with patch.object(
            SubscriptionEvent, "insert", new=AsyncMock(side_effect=RuntimeError("down"))
        ):
            event = await SubscriptionEventService(None).record(
                active_subscription, SubscriptionEventType.EXPIRED
            )

        assert event is None


class TestDispatch:
    @pytest.mark.asyncio
    async def test_mark_dispatched(self, active_subscription):
        event = SubscriptionEvent(
            id=ObjectId(),
            subscriptionId=active_subscription.id,
            userId=active_subscription.userId,
            eventType=SubscriptionEventType.RENEWED,
        )

        with (
            patch.object(SubscriptionEvent, "get", new=AsyncMock(return_value=event)),
            patch.object(SubscriptionEvent, "save", new=AsyncMock()) as mock_save,
        ):
            result = await SubscriptionEventService(None).mark_dispatched(str(event.id))

        assert result.dispatched is True
        assert result.dispatchedAt is not None
        mock_save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_dispatched_unknown(self):
        with patch.object(SubscriptionEvent, "get", new=AsyncMock(return_value=None)):
            with pytest.raises(NotFoundException):
                await SubscriptionEventService(None).mark_dispatched(str(ObjectId()))
