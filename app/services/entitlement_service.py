"""
Entitlement resolution.

``resolve_entitlements`` is a pure read over one subscription: free tier when
there is nothing active, otherwise the purchase-time plan snapshot (live plan
only when no snapshot was ever taken), plus active add-on grants, evaluated
through the feature gate table. It never raises for missing catalog data;
gaps fall back to the least-privileged value.
"""

from __future__ import annotations

import logging
from datetime import datetime

from app.core.config import settings
from app.core.exceptions import ValidationException
from app.models.plan import (
    BOOLEAN_CAPS,
    NUMERIC_CAPS,
    TIER_CAPS,
    UNLIMITED_WHEN_ZERO,
    Plan,
    PlanLimits,
)
from app.models.subscription import AddonDetail, AddonSnapshot, Subscription
from app.schemas.entitlement import (
    ActiveAddonEntitlement,
    EntitlementSet,
    GateAccess,
    PropertyLimitCheck,
)
from app.services.feature_gates import FEATURE_GATES, evaluate_gate, get_gate
from app.services.plan_service import PlanService
from app.services.subscription_service import SubscriptionService
from app.utils.dates import as_utc, utc_now

logger = logging.getLogger(__name__)


def free_tier_limits() -> PlanLimits:
    return PlanLimits(
        properties=settings.FREE_TIER_PROPERTY_LIMIT,
        featuredListings=0,
        photos=0,
        videoTours=0,
        videos=0,
        leads=0,
        posters=0,
        messages=0,
        topRated=False,
        verifiedBadge=False,
        marketingManager=False,
        commissionBased=False,
        support="email",
        leadManagement="none",
    )


def evaluate_gates(limits: PlanLimits, features: list[str]) -> dict[str, GateAccess]:
    gates = {}
    for name, gate in FEATURE_GATES.items():
        has_access, limit = evaluate_gate(gate, limits, features)
        gates[name] = GateAccess(hasAccess=has_access, limit=limit)
    return gates


def free_tier_entitlements() -> EntitlementSet:
    """The fixed entitlement set for callers without an active subscription."""
    limits = free_tier_limits()
    return EntitlementSet(
        limits=limits,
        features=[],
        gates=evaluate_gates(limits, []),
        addons=[],
        source="free_tier",
    )


def merge_limits(base: PlanLimits, grant: PlanLimits) -> PlanLimits:
    """
    Fold an add-on grant into base limits.

    Numeric caps add up (an unlimited property cap stays unlimited), booleans
    are OR'd and tiers take the higher of the two. Grants never lower a value.
    """
    merged = base.model_dump()
    granted = grant.model_dump()
    for cap in NUMERIC_CAPS:
        if cap in UNLIMITED_WHEN_ZERO and merged[cap] == 0:
            continue
        merged[cap] += granted[cap]
    for cap in BOOLEAN_CAPS:
        merged[cap] = merged[cap] or granted[cap]
    for cap, order in TIER_CAPS.items():
        merged[cap] = max(merged[cap], granted[cap], key=order.index)
    return PlanLimits.model_validate(merged)


def _union(features: list[str], extra: list[str]) -> list[str]:
    seen = {feature.lower() for feature in features}
    result = list(features)
    for feature in extra:
        if feature.lower() not in seen:
            seen.add(feature.lower())
            result.append(feature)
    return result


def active_addons(
    subscription: Subscription, now: datetime
) -> list[tuple[AddonDetail, AddonSnapshot]]:
    """
    Pair each effective add-on window with the snapshot taken when it was attached.

    Details and snapshots are appended together, so matching positions belong
    together; otherwise fall back to the latest snapshot of the same add-on.
    Windows without any snapshot grant nothing.
    """
    latest = {snapshot.addonId: snapshot for snapshot in subscription.addonsSnapshot}
    pairs = []
    for index, detail in enumerate(subscription.addonDetails):
        if not detail.is_effective(now):
            continue
        snapshot = None
        if index < len(subscription.addonsSnapshot):
            candidate = subscription.addonsSnapshot[index]
            if candidate.addonId == detail.addonId:
                snapshot = candidate
        snapshot = snapshot or latest.get(detail.addonId)
        if snapshot is None:
            logger.warning(
                "Active add-on without snapshot ignored",
                extra={
                    "subscription_id": str(subscription.id),
                    "addon_id": str(detail.addonId),
                },
            )
            continue
        pairs.append((detail, snapshot))
    return pairs


def resolve_entitlements(
    subscription: Subscription | None,
    live_plan: Plan | None = None,
    now: datetime | None = None,
) -> EntitlementSet:
    """Compute what the holder of ``subscription`` may do right now."""
    now = now or utc_now()
    if subscription is None or not subscription.is_active(now):
        return free_tier_entitlements()

    source = "free_tier"
    plan_name = None
    if subscription.planSnapshot is not None:
        limits = subscription.planSnapshot.limits.model_copy(deep=True)
        features = [f.name for f in subscription.planSnapshot.features if f.enabled]
        plan_name = subscription.planSnapshot.name
        source = "plan_snapshot"
    elif live_plan is not None:
        limits = live_plan.limits.model_copy(deep=True)
        features = [f.name for f in live_plan.features if f.enabled]
        plan_name = live_plan.name
        source = "live_plan"
    else:
        limits = free_tier_limits()
        features = []

    addons = []
    for detail, snapshot in active_addons(subscription, now):
        limits = merge_limits(limits, snapshot.limits)
        features = _union(features, snapshot.features)
        addons.append(
            ActiveAddonEntitlement(
                addonId=str(snapshot.addonId),
                name=snapshot.name,
                category=snapshot.category,
                features=list(snapshot.features),
                expiryDate=as_utc(detail.expiryDate),
            )
        )

    return EntitlementSet(
        limits=limits,
        features=features,
        gates=evaluate_gates(limits, features),
        addons=addons,
        source=source,
        planName=plan_name,
        subscriptionId=str(subscription.id) if subscription.id else None,
        expiresAt=as_utc(subscription.endDate),
    )


class EntitlementService:
    """Looks up the caller's active subscription and resolves it."""

    def __init__(self, db):
        self.db = db
        self.subscription_service = SubscriptionService(db)
        self.plan_service = PlanService(db)

    async def _live_plan_fallback(self, subscription: Subscription) -> Plan | None:
        if subscription.planSnapshot is not None:
            return None
        try:
            return await self.plan_service.get_plan_by_id(str(subscription.planId))
        except Exception as e:
            # Catalog outage: resolve without the plan instead of failing the gate
            logger.warning(
                "Live plan lookup failed, degrading to free tier limits",
                extra={"subscription_id": str(subscription.id), "error": str(e)},
            )
            return None

    async def resolve_for_user(self, user_id: str) -> EntitlementSet:
        now = utc_now()
        subscription = await self.subscription_service.find_active_subscription(
            user_id, now=now
        )
        if subscription is None:
            return free_tier_entitlements()

        live_plan = await self._live_plan_fallback(subscription)
        entitlements = resolve_entitlements(subscription, live_plan=live_plan, now=now)

        logger.debug(
            "Entitlements resolved",
            extra={
                "user_id": user_id,
                "subscription_id": entitlements.subscriptionId,
                "source": entitlements.source,
            },
        )
        return entitlements

    async def check_gate(self, user_id: str, gate_name: str) -> GateAccess:
        if get_gate(gate_name) is None:
            raise ValidationException(
                "Unknown feature gate",
                details={"gate": gate_name, "known": sorted(FEATURE_GATES)},
            )
        entitlements = await self.resolve_for_user(user_id)
        return entitlements.gates[gate_name]

    async def check_property_limit(
        self, user_id: str, current_count: int
    ) -> PropertyLimitCheck:
        """Whether the user may post one more property."""
        if current_count < 0:
            raise ValidationException(
                "currentCount must be zero or greater",
                details={"currentCount": current_count},
            )
        entitlements = await self.resolve_for_user(user_id)
        limit = entitlements.limits.properties
        if limit == 0:
            return PropertyLimitCheck(
                allowed=True, limit=0, unlimited=True, currentCount=current_count
            )
        return PropertyLimitCheck(
            allowed=current_count < limit,
            limit=limit,
            unlimited=False,
            currentCount=current_count,
            remaining=max(0, limit - current_count),
        )
