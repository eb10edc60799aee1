"""Test cases for the maintenance passes."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId

from app.core.exceptions import InvalidTransitionException
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_event import SubscriptionEventType
from app.services.reconciliation_service import ReconciliationService


@pytest.fixture
def reconciliation():
    service = ReconciliationService(None)
    service.event_service.record = AsyncMock(return_value=MagicMock())
    return service


class TestReconcileActiveSubscriptions:
    @pytest.mark.asyncio
    async def test_keeps_newest_and_cancels_the_rest(
        self, reconciliation, test_data_factory, query_result
    ):
        now = datetime.now(UTC)
        newest = test_data_factory.create_subscription(createdAt=now)
        older = test_data_factory.create_subscription(createdAt=now - timedelta(days=3))
        oldest = test_data_factory.create_subscription(createdAt=now - timedelta(days=9))

        aggregate = MagicMock()
        aggregate.to_list = AsyncMock(return_value=[{"_id": newest.userId, "count": 3}])

        def cancelled(subscription_id, reason):
            return MagicMock(status=SubscriptionStatus.CANCELLED, id=subscription_id)

        reconciliation.subscription_service.cancel = AsyncMock(side_effect=cancelled)

        with (
            patch.object(Subscription, "aggregate", return_value=aggregate),
            patch.object(
                Subscription,
                "find",
                return_value=query_result([newest, older, oldest]),
            ) as mock_find,
        ):
            report = await reconciliation.reconcile_active_subscriptions()

        mock_find.return_value.sort.assert_called_once_with("-createdAt")
        assert report.usersChecked == 1
        assert report.duplicatesCancelled == 2
        assert report.cancelledSubscriptionIds == [str(older.id), str(oldest.id)]
        reconciliation.subscription_service.cancel.assert_any_await(
            str(older.id), "superseded"
        )

    @pytest.mark.asyncio
    async def test_skips_subscription_that_expired_meanwhile(
        self, reconciliation, test_data_factory, query_result
    ):
        keep = test_data_factory.create_subscription()
        stale = test_data_factory.create_subscription()
        aggregate = MagicMock()
        aggregate.to_list = AsyncMock(return_value=[{"_id": keep.userId, "count": 2}])
        reconciliation.subscription_service.cancel = AsyncMock(
            side_effect=InvalidTransitionException("cancel", SubscriptionStatus.EXPIRED)
        )

        with (
            patch.object(Subscription, "aggregate", return_value=aggregate),
            patch.object(Subscription, "find", return_value=query_result([keep, stale])),
        ):
            report = await reconciliation.reconcile_active_subscriptions()

        assert report.duplicatesCancelled == 0
        assert report.cancelledSubscriptionIds == []


class TestBackfillAndScan:
    @pytest.mark.asyncio
    async def test_backfill_plan_snapshots(
        self, reconciliation, test_data_factory, sample_plan, query_result
    ):
        with_plan = test_data_factory.create_subscription(
            planId=sample_plan.id, planSnapshot=None
        )
        orphan = test_data_factory.create_subscription(planSnapshot=None)
        reconciliation.plan_service.get_plan_by_id = AsyncMock(
            side_effect=lambda plan_id: sample_plan
            if plan_id == str(sample_plan.id)
            else None
        )
        replace = AsyncMock()

        with (
            patch.object(
                Subscription, "find", return_value=query_result([with_plan, orphan])
            ),
            patch.object(Subscription, "replace", new=replace),
        ):
            report = await reconciliation.backfill_plan_snapshots()

        assert report.updated == 1
        assert report.skipped == 1
        assert report.errors == 0
        replace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backfill_counts_errors(
        self, reconciliation, test_data_factory, query_result
    ):
        subscription = test_data_factory.create_subscription(planSnapshot=None)
        reconciliation.plan_service.get_plan_by_id = AsyncMock(
            side_effect=RuntimeError("catalog down")
        )

        with patch.object(Subscription, "find", return_value=query_result([subscription])):
            report = await reconciliation.backfill_plan_snapshots()

        assert report.errors == 1
        assert report.updated == 0

    @pytest.mark.asyncio
    async def test_find_invalid_subscriptions(
        self, reconciliation, test_data_factory, sample_plan, query_result
    ):
        valid = test_data_factory.create_subscription(sample_plan)
        dangling_plan = ObjectId()
        invalid = test_data_factory.create_subscription(planId=dangling_plan)
        reconciliation.plan_service.get_plan_by_id = AsyncMock(
            side_effect=lambda plan_id: sample_plan
            if plan_id == str(sample_plan.id)
            else None
        )

        with patch.object(Subscription, "find", return_value=query_result([valid, invalid])):
            result = await reconciliation.find_invalid_subscriptions()

        assert [item.subscriptionId for item in result] == [str(invalid.id)]
        assert result[0].planId == str(dangling_plan)
        assert result[0].hasSnapshot is False


class TestExpiringSoon:
    @pytest.mark.asyncio
    async def test_records_one_event_per_end_date(
        self, reconciliation, test_data_factory, query_result
    ):
        now = datetime.now(UTC)
        warned = test_data_factory.create_subscription(endDate=now + timedelta(days=2))
        fresh = test_data_factory.create_subscription(endDate=now + timedelta(days=3))
        reconciliation.event_service.has_expiring_soon_event = AsyncMock(
            side_effect=lambda subscription: subscription is warned
        )

        with patch.object(
            Subscription, "find", return_value=query_result([warned, fresh])
        ) as mock_find:
            recorded = await reconciliation.notify_expiring_subscriptions(7, now=now)

        assert recorded == 1
        criteria = mock_find.call_args.args[0]
        assert criteria["endDate"] == {"$gt": now, "$lte": now + timedelta(days=7)}
        args = reconciliation.event_service.record.call_args.args
        assert args[0] is fresh
        assert args[1] == SubscriptionEventType.EXPIRING_SOON
        assert args[2] == {"daysRemaining": 3}
