"""
Feature gate table.

Each gate maps resolved limits and feature names to ``hasAccess`` plus a
numeric ``limit`` (0 = unlimited). Adding a gate is adding a row.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from app.models.plan import PlanLimits

# Monthly lead quota per lead-management tier; 0 is unlimited
LEAD_QUOTAS: dict[str, int] = {
    "none": 0,
    "basic": 50,
    "advanced": 1000,
    "premium": 1000,
    "enterprise": 0,
}


def _feature_contains(substring: str) -> Callable[[PlanLimits, Iterable[str]], bool]:
    needle = substring.lower()

    def predicate(limits: PlanLimits, features: Iterable[str]) -> bool:
        return any(needle in feature.lower() for feature in features)

    return predicate


def _no_limit(limits: PlanLimits) -> int:
    return 0


@dataclass(frozen=True)
class FeatureGate:
    name: str
    description: str
    predicate: Callable[[PlanLimits, Iterable[str]], bool]
    limit: Callable[[PlanLimits], int] = _no_limit


FEATURE_GATES: dict[str, FeatureGate] = {
    gate.name: gate
    for gate in (
        FeatureGate(
            name="addPropertySubscription",
            description="Post properties up to the plan's property cap",
            predicate=lambda limits, features: True,
            limit=lambda limits: limits.properties,
        ),
        FeatureGate(
            name="featuredListingSubscription",
            description="Feature listings",
            predicate=lambda limits, features: limits.featuredListings > 0,
            limit=lambda limits: limits.featuredListings,
        ),
        FeatureGate(
            name="premiumAnalyticsSubscription",
            description="Premium analytics dashboard",
            predicate=_feature_contains("analytics"),
        ),
        FeatureGate(
            name="leadManagementSubscription",
            description="Lead management tools",
            predicate=lambda limits, features: limits.leadManagement != "none",
            limit=lambda limits: LEAD_QUOTAS[limits.leadManagement],
        ),
        FeatureGate(
            name="topRatedSubscription",
            description="Top rated badge",
            predicate=lambda limits, features: limits.topRated,
        ),
        FeatureGate(
            name="verifiedBadgeSubscription",
            description="Verified vendor badge",
            predicate=lambda limits, features: limits.verifiedBadge,
        ),
        FeatureGate(
            name="marketingManagerSubscription",
            description="Dedicated marketing manager",
            predicate=lambda limits, features: limits.marketingManager,
        ),
    )
}


def evaluate_gate(
    gate: FeatureGate, limits: PlanLimits, features: Iterable[str]
) -> tuple[bool, int]:
    has_access = bool(gate.predicate(limits, features))
    return has_access, gate.limit(limits) if has_access else 0


def get_gate(name: str) -> FeatureGate | None:
    return FEATURE_GATES.get(name)
