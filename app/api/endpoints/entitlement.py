"""Entitlement API endpoints consulted by feature-gated callers."""

import logging

from fastapi import APIRouter, Depends, Query

from app.core.auth_dependencies import TokenData, get_current_user_token, require_admin
from app.core.database import get_database
from app.core.entitlement_dependency import entitlement_required
from app.schemas.entitlement import EntitlementSet, GateAccess, PropertyLimitCheck
from app.schemas.response import SuccessResponse
from app.services.entitlement_service import EntitlementService
from app.services.feature_gates import FEATURE_GATES

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/gates", response_model=SuccessResponse[dict[str, str]])
async def list_gates():
    """Names and descriptions of every feature gate."""
    return SuccessResponse(
        message="Feature gates retrieved",
        data={name: gate.description for name, gate in FEATURE_GATES.items()},
    )


@router.get("/me", response_model=SuccessResponse[EntitlementSet])
async def get_my_entitlements(
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    entitlements = await EntitlementService(db).resolve_for_user(current_user.user_id)
    return SuccessResponse(message="Entitlements resolved", data=entitlements)


@router.get("/me/gates/{gate_name}", response_model=SuccessResponse[GateAccess])
async def check_my_gate(
    gate_name: str,
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    access = await EntitlementService(db).check_gate(current_user.user_id, gate_name)
    return SuccessResponse(message="Feature gate evaluated", data=access)


@router.get("/me/property-limit", response_model=SuccessResponse[PropertyLimitCheck])
async def check_my_property_limit(
    current_count: int = Query(..., alias="currentCount", ge=0),
    current_user: TokenData = Depends(get_current_user_token),
    db=Depends(get_database),
):
    """Whether the caller may post another property, given how many they have."""
    check = await EntitlementService(db).check_property_limit(
        current_user.user_id, current_count
    )
    return SuccessResponse(
        message="Property limit evaluated",
        data=check,
    )


@router.get("/me/featured-listings", response_model=SuccessResponse[GateAccess])
async def get_featured_listing_quota(
    access: GateAccess = Depends(entitlement_required("featuredListingSubscription")),
):
    """Featured listing quota. 403 when the caller's plan has none."""
    return SuccessResponse(message="Featured listing quota", data=access)


@router.get("/me/lead-quota", response_model=SuccessResponse[GateAccess])
async def get_lead_quota(
    access: GateAccess = Depends(entitlement_required("leadManagementSubscription")),
):
    """Lead management quota. 403 without lead management."""
    return SuccessResponse(message="Lead management quota", data=access)


@router.get("/users/{user_id}", response_model=SuccessResponse[EntitlementSet])
async def get_user_entitlements(
    user_id: str,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    entitlements = await EntitlementService(db).resolve_for_user(user_id)
    logger.info(
        "Entitlements resolved for user by admin",
        extra={"user_id": user_id, "admin_id": admin.user_id},
    )
    return SuccessResponse(message="Entitlements resolved", data=entitlements)
