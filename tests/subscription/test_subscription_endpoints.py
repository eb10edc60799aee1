"""Test cases for subscription API endpoints."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from bson import ObjectId
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.endpoints.subscription import router
from app.core.auth_dependencies import get_current_user_token
from app.core.database import get_database
from app.core.error_handlers import register_exception_handlers
from app.core.exceptions import InvalidTransitionException, NotFoundException
from app.models.subscription import SubscriptionStatus
from app.schemas.subscription import ExpirySweepReport, RevenueStats
from app.services import subscription_lifecycle as lifecycle

OTHER_USER_ID = "507f1f77bcf86cd799439012"


def create_test_app(token):
    """Create a test FastAPI app with exception handlers and a fixed caller."""
    app = FastAPI()
    app.include_router(router, prefix="/subscriptions")
    register_exception_handlers(app)
    app.dependency_overrides[get_database] = lambda: Mock()
    app.dependency_overrides[get_current_user_token] = lambda: token
    return app


@pytest.fixture
def vendor_client(vendor_token):
    return TestClient(create_test_app(vendor_token))


@pytest.fixture
def admin_client(admin_token):
    return TestClient(create_test_app(admin_token))


class TestCheckout:
    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_create_subscription(
        self, mock_service_class, vendor_client, vendor_token, pending_subscription
    ):
        mock_service = mock_service_class.return_value
        mock_service.create_pending = AsyncMock(return_value=pending_subscription)

        response = vendor_client.post(
            "/subscriptions/",
            json={"planId": str(pending_subscription.planId), "amount": 999, "paymentMethod": "upi"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "pending"
        assert body["data"]["id"] == str(pending_subscription.id)
        kwargs = mock_service.create_pending.call_args.kwargs
        assert kwargs["user_id"] == vendor_token.user_id
        assert kwargs["payment_method"] == "upi"

    def test_create_for_other_user_requires_admin(self, vendor_client):
        response = vendor_client.post(
            "/subscriptions/",
            json={
                "planId": "507f1f77bcf86cd799439000",
                "amount": 999,
                "paymentMethod": "upi",
                "userId": OTHER_USER_ID,
            },
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "AUTHORIZATION_ERROR"

    def test_create_rejects_negative_amount(self, vendor_client):
        response = vendor_client.post(
            "/subscriptions/",
            json={"planId": "507f1f77bcf86cd799439000", "amount": -1, "paymentMethod": "upi"},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_create_rejects_unknown_payment_method(self, vendor_client):
        response = vendor_client.post(
            "/subscriptions/",
            json={"planId": "507f1f77bcf86cd799439000", "amount": 1, "paymentMethod": "cheque"},
        )

        assert response.status_code == 422


class TestLifecycleEndpoints:
    def test_activate_requires_admin(self, vendor_client, pending_subscription):
        response = vendor_client.post(
            f"/subscriptions/{pending_subscription.id}/activate",
            json={"transactionRef": "txn_1"},
        )

        assert response.status_code == 403

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_activate(self, mock_service_class, admin_client, pending_subscription):
        lifecycle.activate(pending_subscription, "txn_1")
        mock_service = mock_service_class.return_value
        mock_service.activate = AsyncMock(return_value=pending_subscription)

        response = admin_client.post(
            f"/subscriptions/{pending_subscription.id}/activate",
            json={"transactionRef": "txn_1", "orderRef": "order_9"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "active"
        assert data["transactionId"] == "txn_1"
        assert data["isActive"] is True
        mock_service.activate.assert_awaited_once_with(
            str(pending_subscription.id), "txn_1", amount=None, order_ref="order_9"
        )

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_second_activation_conflicts(
        self, mock_service_class, admin_client, active_subscription
    ):
        mock_service = mock_service_class.return_value
        mock_service.activate = AsyncMock(
            side_effect=InvalidTransitionException(
                "activate", SubscriptionStatus.ACTIVE, lifecycle.ACTIVATABLE
            )
        )

        response = admin_client.post(
            f"/subscriptions/{active_subscription.id}/activate",
            json={"transactionRef": "txn_2"},
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "INVALID_TRANSITION"
        assert body["details"]["current_status"] == "active"

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_owner_can_cancel(
        self, mock_service_class, vendor_client, active_subscription
    ):
        cancelled = active_subscription.model_copy(deep=True)
        lifecycle.cancel(cancelled, "Moving abroad")
        mock_service = mock_service_class.return_value
        mock_service.get_subscription = AsyncMock(return_value=active_subscription)
        mock_service.cancel = AsyncMock(return_value=cancelled)

        response = vendor_client.post(
            f"/subscriptions/{active_subscription.id}/cancel",
            json={"reason": "Moving abroad"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert response.json()["data"]["cancellationReason"] == "Moving abroad"

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_other_user_cannot_cancel(
        self, mock_service_class, vendor_client, test_data_factory
    ):
        foreign = test_data_factory.create_subscription(userId=ObjectId(OTHER_USER_ID))
        mock_service = mock_service_class.return_value
        mock_service.get_subscription = AsyncMock(return_value=foreign)
        mock_service.cancel = AsyncMock()

        response = vendor_client.post(f"/subscriptions/{foreign.id}/cancel", json={})

        assert response.status_code == 403
        mock_service.cancel.assert_not_called()

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_unknown_subscription(self, mock_service_class, vendor_client):
        mock_service_class.return_value.get_subscription = AsyncMock(
            side_effect=NotFoundException("Subscription", "abc")
        )

        response = vendor_client.get("/subscriptions/abc")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"


class TestReadEndpoints:
    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_active_subscription_none(self, mock_service_class, vendor_client):
        mock_service_class.return_value.find_active_subscription = AsyncMock(
            return_value=None
        )

        response = vendor_client.get("/subscriptions/me/active")

        assert response.status_code == 200
        assert response.json()["data"] is None

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_ledger_summary(self, mock_service_class, vendor_client, active_subscription):
        lifecycle.renew(
            active_subscription,
            active_subscription.endDate.replace(year=active_subscription.endDate.year + 1),
            "txn_r",
            amount=500,
        )
        mock_service_class.return_value.get_subscription = AsyncMock(
            return_value=active_subscription
        )

        response = vendor_client.get(
            f"/subscriptions/{active_subscription.id}/payment-history"
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["entryCount"] == 1
        assert data["totalsByType"] == {"renewal": 500.0}

    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_admin_list_is_paginated(
        self, mock_service_class, admin_client, active_subscription
    ):
        mock_service_class.return_value.list_subscriptions = AsyncMock(
            return_value=([active_subscription], 21)
        )

        response = admin_client.get("/subscriptions/admin/list?page=2&size=20")

        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]) == 1
        assert body["pagination"]["total"] == 21

    def test_admin_list_requires_admin(self, vendor_client):
        assert vendor_client.get("/subscriptions/admin/list").status_code == 403

    @patch("app.api.endpoints.subscription.PaymentLedgerService")
    def test_revenue_stats(self, mock_service_class, admin_client):
        mock_service_class.return_value.get_revenue_stats = AsyncMock(
            return_value=RevenueStats(
                subscriptionCount=2,
                totalPaidRevenue=1999.0,
                addonPaidRevenue=299.0,
                grandTotalRevenue=2298.0,
                monthlyPaidRevenue=1299.0,
                revenueByStatus={"active": 1499.0, "cancelled": 500.0},
            )
        )

        response = admin_client.get("/subscriptions/admin/revenue-stats")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["grandTotalRevenue"] == 2298.0
        assert data["revenueByStatus"]["cancelled"] == 500.0
        mock_service_class.return_value.get_revenue_stats.assert_awaited_once_with()

    def test_revenue_stats_requires_admin(self, vendor_client):
        response = vendor_client.get("/subscriptions/admin/revenue-stats")

        assert response.status_code == 403


class TestMaintenanceEndpoints:
    @patch("app.api.endpoints.subscription.SubscriptionService")
    def test_expiry_sweep(self, mock_service_class, admin_client):
        mock_service_class.return_value.expire_due_subscriptions = AsyncMock(
            return_value=ExpirySweepReport(checked=3, expired=2, addonsDeactivated=1)
        )

        response = admin_client.post("/subscriptions/maintenance/expire")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "checked": 3,
            "expired": 2,
            "addonsDeactivated": 1,
        }

    def test_maintenance_requires_admin(self, vendor_client):
        assert vendor_client.post("/subscriptions/maintenance/reconcile").status_code == 403
