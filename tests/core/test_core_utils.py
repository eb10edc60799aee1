"""Test cases for date helpers, log sanitizing and the maintenance scheduler."""

import json
import logging
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.logging import JSONFormatter, sanitize_log_data
from app.core.subscription_scheduler import SubscriptionScheduler
from app.schemas.subscription import ExpirySweepReport
from app.utils.dates import add_months, as_utc


class TestDates:
    @pytest.mark.parametrize(
        "start,months,expected",
        [
            (datetime(2025, 1, 31, tzinfo=UTC), 1, datetime(2025, 2, 28, tzinfo=UTC)),
            (datetime(2024, 1, 31, tzinfo=UTC), 1, datetime(2024, 2, 29, tzinfo=UTC)),
            (datetime(2025, 11, 15, tzinfo=UTC), 3, datetime(2026, 2, 15, tzinfo=UTC)),
            (datetime(2025, 3, 10, tzinfo=UTC), 12, datetime(2026, 3, 10, tzinfo=UTC)),
        ],
    )
    def test_add_months_clamps_day(self, start, months, expected):
        assert add_months(start, months) == expected

    def test_as_utc_treats_naive_as_utc(self):
        naive = datetime(2025, 5, 1, 12, 0)

        assert as_utc(naive) == datetime(2025, 5, 1, 12, 0, tzinfo=UTC)
        assert as_utc(None) is None

    def test_as_utc_converts_offsets(self):
        ist = timezone(timedelta(hours=5, minutes=30))

        assert as_utc(datetime(2025, 5, 1, 17, 30, tzinfo=ist)) == datetime(
            2025, 5, 1, 12, 0, tzinfo=UTC
        )


class TestLogSanitizing:
    def test_masks_secrets_and_emails(self):
        data = {
            "transaction_secret": "abc",
            "email": "vendor@example.com",
            "header": "Bearer aaa.bbb.ccc",
            "nested": {"api_key": "k"},
            "count": 3,
        }

        sanitized = sanitize_log_data(data)

        assert sanitized["transaction_secret"] == "********"
        assert sanitized["email"] == "***@***.***"
        assert sanitized["header"] == "Bearer ********"
        assert sanitized["nested"]["api_key"] == "********"
        assert sanitized["count"] == 3
        assert data["email"] == "vendor@example.com"

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord(
            "app.services.subscription_service",
            logging.INFO,
            __file__,
            10,
            "Subscription activated",
            (),
            None,
        )
        record.subscription_id = "abc"
        record.user_email = "vendor@example.com"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Subscription activated"
        assert entry["subscription_id"] == "abc"
        assert entry["user_email"] == "***@***.***"


class TestSubscriptionScheduler:
    def test_disabled_scheduler_does_not_start(self):
        scheduler = SubscriptionScheduler()

        with patch(
            "app.core.subscription_scheduler.settings.SUBSCRIPTION_SCHEDULER_ENABLED",
            False,
        ):
            scheduler.start()

        assert scheduler.scheduler is None
        scheduler.shutdown()

    @pytest.mark.asyncio
    @patch("app.core.subscription_scheduler.SubscriptionService")
    async def test_expiry_task(self, mock_service_class):
        mock_service_class.return_value.expire_due_subscriptions = AsyncMock(
            return_value=ExpirySweepReport(checked=1, expired=1)
        )

        await SubscriptionScheduler().expire_subscriptions_task()

        mock_service_class.return_value.expire_due_subscriptions.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.core.subscription_scheduler.ReconciliationService")
    async def test_task_errors_are_logged_not_raised(self, mock_service_class):
        mock_service_class.return_value.reconcile_active_subscriptions = AsyncMock(
            side_effect=RuntimeError("mongo down")
        )

        await SubscriptionScheduler().reconcile_task()

        mock_service_class.return_value.reconcile_active_subscriptions.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.core.subscription_scheduler.ReconciliationService")
    async def test_expiring_soon_task_uses_configured_window(self, mock_service_class):
        mock_service = MagicMock()
        mock_service.notify_expiring_subscriptions = AsyncMock(return_value=2)
        mock_service_class.return_value = mock_service

        with patch(
            "app.core.subscription_scheduler.settings.EXPIRING_SOON_DAYS", 3
        ):
            await SubscriptionScheduler().notify_expiring_task()

        mock_service.notify_expiring_subscriptions.assert_awaited_once_with(3)
