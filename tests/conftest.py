"""Test configuration and fixtures."""

from contextlib import ExitStack
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.core.auth_dependencies import TokenData
from app.core.database import get_database
from app.main import app
from app.models.addon import Addon, AddonLimits
from app.models.plan import Plan, PlanFeature, PlanLimits
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_event import SubscriptionEvent
from app.services.snapshot_service import build_plan_snapshot

USER_ID = "507f1f77bcf86cd799439011"
ADMIN_ID = "507f1f77bcf86cd799439099"


@pytest.fixture(autouse=True)
def beanie_settings():
    """Let documents be built without init_beanie."""
    with ExitStack() as stack:
        for model in (Plan, Addon, Subscription, SubscriptionEvent):
            mock_get_settings = stack.enter_context(patch.object(model, "get_settings"))
            mock_settings = MagicMock()
            mock_settings.pymongo_collection = MagicMock()
            mock_get_settings.return_value = mock_settings
        yield


def find_result(items=None, count=None, first=None):
    """Mock of a Beanie find query supporting the chained calls the services use."""
    items = list(items or [])
    query = MagicMock()
    query.sort.return_value = query
    query.skip.return_value = query
    query.limit.return_value = query
    query.to_list = AsyncMock(return_value=items)
    query.count = AsyncMock(return_value=len(items) if count is None else count)
    query.first_or_none = AsyncMock(
        return_value=first if first is not None else (items[0] if items else None)
    )
    return query


@pytest.fixture
def query_result():
    return find_result


class TestDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def create_plan(**overrides):
        data = {
            "id": ObjectId(),
            "identifier": "premium",
            "name": "Premium",
            "description": "For growing agencies",
            "price": 999.0,
            "currency": "INR",
            "billingPeriod": "monthly",
            "billingCycleMonths": 1,
            "features": [
                PlanFeature(name="Premium analytics"),
                PlanFeature(name="Priority listing"),
            ],
            "limits": PlanLimits(
                properties=10,
                featuredListings=2,
                photos=20,
                leadManagement="advanced",
                support="priority",
            ),
        }
        data.update(overrides)
        return Plan(**data)

    @staticmethod
    def create_addon(**overrides):
        data = {
            "id": ObjectId(),
            "name": "Featured boost",
            "description": "Five extra featured listings",
            "price": 299.0,
            "category": "marketing",
            "billingType": "monthly",
            "features": ["Featured badge"],
            "limits": AddonLimits(featuredListings=5),
        }
        data.update(overrides)
        return Addon(**data)

    @staticmethod
    def create_subscription(plan=None, **overrides):
        now = datetime.now(UTC)
        data = {
            "id": ObjectId(),
            "userId": ObjectId(USER_ID),
            "planId": plan.id if plan else ObjectId(),
            "planSnapshot": build_plan_snapshot(plan) if plan else None,
            "status": SubscriptionStatus.ACTIVE,
            "startDate": now - timedelta(days=5),
            "endDate": now + timedelta(days=25),
            "amount": plan.price if plan else 999.0,
            "paymentMethod": "upi",
            "createdAt": now - timedelta(days=5),
        }
        data.update(overrides)
        return Subscription(**data)


@pytest.fixture
def test_data_factory():
    """Test data factory fixture."""
    return TestDataFactory()


@pytest.fixture
def sample_plan():
    return TestDataFactory.create_plan()


@pytest.fixture
def sample_addon():
    return TestDataFactory.create_addon()


@pytest.fixture
def active_subscription(sample_plan):
    return TestDataFactory.create_subscription(sample_plan)


@pytest.fixture
def pending_subscription(sample_plan):
    return TestDataFactory.create_subscription(
        sample_plan, status=SubscriptionStatus.PENDING, planSnapshot=None
    )


@pytest.fixture
def mock_database():
    """Mock database for testing."""
    return MagicMock()


def _token(user_id: str, role: str) -> TokenData:
    return TokenData(
        user_id=user_id,
        email=f"{role}@example.com",
        role=role,
        expires_at=datetime.now(UTC) + timedelta(minutes=15),
    )


@pytest.fixture
def vendor_token():
    return _token(USER_ID, "vendor")


@pytest.fixture
def admin_token():
    return _token(ADMIN_ID, "admin")


@pytest.fixture(autouse=True)
def mock_database_dependency(mock_database):
    """Mock database dependency for all tests."""
    app.dependency_overrides[get_database] = lambda: mock_database
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)
