"""Concurrent writers against a real Beanie document store."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from app.models.addon import Addon
from app.models.plan import Plan
from app.models.subscription import PaymentType, Subscription, SubscriptionStatus
from app.models.subscription_event import SubscriptionEvent
from app.services import payment_ledger
from app.services import subscription_lifecycle as lifecycle
from app.services.subscription_service import SubscriptionService


@pytest.fixture
def beanie_settings():
    """Documents here are bound to the in-memory database instead."""
    yield


@pytest_asyncio.fixture
async def beanie_db():
    client = AsyncMongoMockClient(tz_aware=True)
    database = client["test_marketplace"]
    await init_beanie(
        database=database,
        document_models=[Plan, Addon, Subscription, SubscriptionEvent],
        skip_indexes=True,
    )
    yield database


async def stored(test_data_factory, **overrides):
    subscription = test_data_factory.create_subscription(
        test_data_factory.create_plan(), **overrides
    )
    await subscription.insert()
    return subscription


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_second_activation_from_stale_copy_is_noop(
        self, beanie_db, test_data_factory
    ):
        pending = await stored(
            test_data_factory, status=SubscriptionStatus.PENDING, planSnapshot=None
        )
        first = await Subscription.get(pending.id)
        second = await Subscription.get(pending.id)
        service = SubscriptionService(beanie_db)

        _, first_changed, _ = await service.apply_transition(
            pending.id,
            "activate",
            lambda s: lifecycle.activate(s, "txn_first"),
            subscription=first,
        )
        persisted, second_changed, _ = await service.apply_transition(
            pending.id,
            "activate",
            lambda s: lifecycle.activate(s, "txn_second"),
            subscription=second,
        )

        assert first_changed is True
        assert second_changed is False
        assert persisted.transactionId == "txn_first"

        reloaded = await Subscription.get(pending.id)
        assert reloaded.status == SubscriptionStatus.ACTIVE
        assert reloaded.transactionId == "txn_first"
        assert len(payment_ledger.entries(reloaded, PaymentType.PURCHASE)) == 1
        assert len(reloaded.paymentHistory) == 1

    @pytest.mark.asyncio
    async def test_stale_cancel_after_expiry_is_noop(self, beanie_db, test_data_factory):
        now = datetime.now(UTC)
        lapsed = await stored(
            test_data_factory,
            startDate=now - timedelta(days=31),
            endDate=now - timedelta(minutes=1),
        )
        sweeper = await Subscription.get(lapsed.id)
        canceller = await Subscription.get(lapsed.id)
        service = SubscriptionService(beanie_db)

        await service.apply_transition(
            lapsed.id, "expire", lambda s: lifecycle.expire(s, now), subscription=sweeper
        )
        _, changed, _ = await service.apply_transition(
            lapsed.id,
            "cancel",
            lambda s: lifecycle.cancel(s, "changed my mind", now),
            subscription=canceller,
        )

        assert changed is False
        reloaded = await Subscription.get(lapsed.id)
        assert reloaded.status == SubscriptionStatus.EXPIRED
        assert reloaded.cancelledAt is None

    @pytest.mark.asyncio
    async def test_fresh_copy_writes_after_winner(self, beanie_db, test_data_factory):
        active = await stored(test_data_factory)
        stale = await Subscription.get(active.id)
        service = SubscriptionService(beanie_db)

        await service.apply_transition(
            active.id,
            "renew",
            lambda s: lifecycle.renew(s, s.endDate + timedelta(days=30), "txn_renew"),
        )
        persisted, changed, _ = await service.apply_transition(
            active.id,
            "cancel",
            lambda s: lifecycle.cancel(s, "moving"),
            subscription=stale,
        )

        assert changed is True
        assert persisted.status == SubscriptionStatus.CANCELLED
        reloaded = await Subscription.get(active.id)
        assert reloaded.status == SubscriptionStatus.CANCELLED
        assert len(payment_ledger.entries(reloaded, PaymentType.RENEWAL)) == 1
