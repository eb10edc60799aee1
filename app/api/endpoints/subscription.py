"""Subscription API endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.core.auth_dependencies import TokenData, get_current_user_token, require_admin
from app.core.config import settings
from app.core.database import get_database
from app.core.exceptions import (
    AuthorizationException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from app.schemas.response import PaginatedResponse, PaginationMeta, SuccessResponse
from app.schemas.subscription import (
    AddonAttach,
    BackfillReport,
    ExpirySweepReport,
    InvalidSubscription,
    LedgerSummary,
    PaymentHistoryItem,
    ReconciliationReport,
    RevenueStats,
    SubscriptionActivate,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionRenew,
    SubscriptionResponse,
    SubscriptionStats,
    SubscriptionUpgrade,
)
from app.services import payment_ledger
from app.services.payment_ledger import PaymentLedgerService
from app.services.reconciliation_service import ReconciliationService
from app.services.subscription_event_service import SubscriptionEventService
from app.services.subscription_service import SubscriptionService

router = APIRouter()
logger = logging.getLogger(__name__)


def _ensure_owner_or_admin(subscription, current_user: TokenData) -> None:
    if str(subscription.userId) != current_user.user_id and not current_user.is_admin:
        raise AuthorizationException("You do not have access to this subscription")


@router.post("/", response_model=SuccessResponse[SubscriptionResponse])
async def create_subscription(
    subscription_data: SubscriptionCreate,
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    """Start a checkout. The subscription stays pending until payment is confirmed."""
    user_id = current_user.user_id
    if subscription_data.userId and subscription_data.userId != user_id:
        if not current_user.is_admin:
            raise AuthorizationException("Only admins can subscribe on behalf of a user")
        user_id = subscription_data.userId

    try:
        subscription = await SubscriptionService(db).create_pending(
            user_id=user_id,
            plan_id=subscription_data.planId,
            amount=subscription_data.amount,
            payment_method=subscription_data.paymentMethod,
            currency=subscription_data.currency,
            billing_cycle_months=subscription_data.billingCycleMonths,
            addon_ids=subscription_data.addonIds,
            auto_renew=subscription_data.autoRenew,
        )
        return SuccessResponse(
            message="Subscription created",
            data=SubscriptionResponse.from_document(subscription),
        )

    except ValidationException:
        raise
    except Exception as e:
        logger.error(
            "Error creating subscription",
            extra={
                "user_id": user_id,
                "plan_id": subscription_data.planId,
                "error": str(e),
            },
            exc_info=True,
        )
        raise


@router.get("/me", response_model=SuccessResponse[list[SubscriptionResponse]])
async def get_user_subscriptions(
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    """Get all subscriptions for the current user."""
    subscriptions = await SubscriptionService(db).get_user_subscriptions(
        current_user.user_id
    )
    return SuccessResponse(
        message="Subscriptions retrieved successfully",
        data=[SubscriptionResponse.from_document(sub) for sub in subscriptions],
    )


@router.get("/me/active", response_model=SuccessResponse[SubscriptionResponse | None])
async def get_active_subscription(
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).find_active_subscription(
        current_user.user_id
    )
    return SuccessResponse(
        message="Active subscription retrieved"
        if subscription
        else "No active subscription",
        data=SubscriptionResponse.from_document(subscription) if subscription else None,
    )


@router.get(
    "/me/payment-history", response_model=SuccessResponse[list[PaymentHistoryItem]]
)
async def get_payment_history(
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    items = await PaymentLedgerService(db).get_user_payment_history(
        current_user.user_id
    )
    return SuccessResponse(message="Payment history retrieved", data=items)


@router.get("/admin/list", response_model=PaginatedResponse[SubscriptionResponse])
async def list_subscriptions(
    status: str | None = Query(None, description="Filter by status"),
    user_id: str | None = Query(None, alias="userId"),
    plan_id: str | None = Query(None, alias="planId"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    items, total = await SubscriptionService(db).list_subscriptions(
        status=status, user_id=user_id, plan_id=plan_id, page=page, size=size
    )
    return PaginatedResponse(
        data=[SubscriptionResponse.from_document(sub) for sub in items],
        pagination=PaginationMeta.build(page=page, size=size, total=total),
    )


@router.get("/admin/stats", response_model=SuccessResponse[SubscriptionStats])
async def get_subscription_stats(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    stats = await SubscriptionService(db).get_subscription_stats()
    return SuccessResponse(message="Subscription statistics", data=stats)


@router.get("/admin/revenue-stats", response_model=SuccessResponse[RevenueStats])
async def get_revenue_stats(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    stats = await PaymentLedgerService(db).get_revenue_stats()
    return SuccessResponse(message="Revenue statistics", data=stats)


@router.post(
    "/maintenance/expire", response_model=SuccessResponse[ExpirySweepReport]
)
async def run_expiry_sweep(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    report = await SubscriptionService(db).expire_due_subscriptions()
    logger.info(
        "Expiry sweep triggered manually",
        extra={"admin_id": admin.user_id, "expired": report.expired},
    )
    return SuccessResponse(message="Expiry sweep finished", data=report)


@router.post(
    "/maintenance/reconcile", response_model=SuccessResponse[ReconciliationReport]
)
async def run_reconciliation(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    report = await ReconciliationService(db).reconcile_active_subscriptions()
    return SuccessResponse(message="Reconciliation finished", data=report)


@router.post(
    "/maintenance/backfill-snapshots", response_model=SuccessResponse[BackfillReport]
)
async def run_snapshot_backfill(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    report = await ReconciliationService(db).backfill_plan_snapshots()
    return SuccessResponse(message="Snapshot backfill finished", data=report)


@router.get(
    "/maintenance/invalid", response_model=SuccessResponse[list[InvalidSubscription]]
)
async def list_invalid_subscriptions(
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    invalid = await ReconciliationService(db).find_invalid_subscriptions()
    return SuccessResponse(
        message=f"Found {len(invalid)} subscriptions with unresolved plans",
        data=invalid,
    )


@router.post("/maintenance/notify-expiring", response_model=SuccessResponse[int])
async def run_expiring_soon_notices(
    days: int = Query(settings.EXPIRING_SOON_DAYS, ge=1, le=90),
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    recorded = await ReconciliationService(db).notify_expiring_subscriptions(days)
    return SuccessResponse(message="Expiring-soon events recorded", data=recorded)


@router.get("/events/pending", response_model=SuccessResponse[list[dict]])
async def list_pending_events(
    limit: int = Query(100, ge=1, le=500),
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    """Undispatched lifecycle events for the notification system."""
    events = await SubscriptionEventService(db).list_pending(limit)
    return SuccessResponse(
        message="Pending events retrieved",
        data=[
            {
                "id": str(event.id),
                "subscriptionId": str(event.subscriptionId),
                "userId": str(event.userId),
                "eventType": event.eventType,
                "payload": event.payload,
                "createdAt": event.createdAt,
            }
            for event in events
        ],
    )


@router.post("/events/{event_id}/dispatched", response_model=SuccessResponse[str])
async def mark_event_dispatched(
    event_id: str,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    event = await SubscriptionEventService(db).mark_dispatched(event_id)
    return SuccessResponse(message="Event marked as dispatched", data=str(event.id))


@router.get("/{subscription_id}", response_model=SuccessResponse[SubscriptionResponse])
async def get_subscription(
    subscription_id: str,
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).get_subscription(subscription_id)
    _ensure_owner_or_admin(subscription, current_user)
    return SuccessResponse(
        message="Subscription retrieved successfully",
        data=SubscriptionResponse.from_document(subscription),
    )


@router.get(
    "/{subscription_id}/payment-history",
    response_model=SuccessResponse[LedgerSummary],
)
async def get_ledger_summary(
    subscription_id: str,
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).get_subscription(subscription_id)
    _ensure_owner_or_admin(subscription, current_user)
    return SuccessResponse(
        message="Payment summary retrieved", data=payment_ledger.summarize(subscription)
    )


@router.post(
    "/{subscription_id}/activate", response_model=SuccessResponse[SubscriptionResponse]
)
async def activate_subscription(
    subscription_id: str,
    payment: SubscriptionActivate,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    """Activate a pending subscription with a payment reference verified upstream."""
    try:
        subscription = await SubscriptionService(db).activate(
            subscription_id,
            payment.transactionRef,
            amount=payment.amount,
            order_ref=payment.orderRef,
        )
        return SuccessResponse(
            message="Subscription activated",
            data=SubscriptionResponse.from_document(subscription),
        )

    except (NotFoundException, ValidationException, InvalidTransitionException):
        raise
    except Exception as e:
        logger.error(
            "Error activating subscription",
            extra={"subscription_id": subscription_id, "error": str(e)},
            exc_info=True,
        )
        raise


@router.post(
    "/{subscription_id}/renew", response_model=SuccessResponse[SubscriptionResponse]
)
async def renew_subscription(
    subscription_id: str,
    renewal: SubscriptionRenew,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).renew(
        subscription_id,
        renewal.newEndDate,
        renewal.transactionRef,
        amount=renewal.amount,
        new_plan_id=renewal.planId,
    )
    return SuccessResponse(
        message="Subscription renewed",
        data=SubscriptionResponse.from_document(subscription),
    )


@router.post(
    "/{subscription_id}/cancel", response_model=SuccessResponse[SubscriptionResponse]
)
async def cancel_subscription(
    subscription_id: str,
    cancellation: SubscriptionCancel,
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    subscription_service = SubscriptionService(db)
    subscription = await subscription_service.get_subscription(subscription_id)
    _ensure_owner_or_admin(subscription, current_user)

    subscription = await subscription_service.cancel(subscription_id, cancellation.reason)
    logger.info(
        "Subscription cancel requested",
        extra={"subscription_id": subscription_id, "user_id": current_user.user_id},
    )
    return SuccessResponse(
        message="Subscription cancelled",
        data=SubscriptionResponse.from_document(subscription),
    )


@router.post(
    "/{subscription_id}/addons", response_model=SuccessResponse[SubscriptionResponse]
)
async def attach_addon(
    subscription_id: str,
    purchase: AddonAttach,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).attach_addon(
        subscription_id,
        purchase.addonId,
        billing_cycle_months=purchase.billingCycleMonths,
        amount=purchase.amount,
        payment_ref=purchase.paymentRef,
    )
    return SuccessResponse(
        message="Add-on attached",
        data=SubscriptionResponse.from_document(subscription),
    )


@router.post(
    "/{subscription_id}/upgrade", response_model=SuccessResponse[SubscriptionResponse]
)
async def upgrade_subscription(
    subscription_id: str,
    upgrade: SubscriptionUpgrade,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    subscription = await SubscriptionService(db).upgrade(
        subscription_id,
        upgrade.planId,
        transaction_ref=upgrade.transactionRef,
        amount=upgrade.amount,
    )
    return SuccessResponse(
        message="Subscription upgraded",
        data=SubscriptionResponse.from_document(subscription),
    )
