"""Plan catalog API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from app.core.auth_dependencies import TokenData, require_admin
from app.core.database import get_database
from app.core.exceptions import NotFoundException, ValidationException
from app.schemas.plan import PlanChangeImpact, PlanCreate, PlanResponse, PlanUpdate
from app.schemas.response import SuccessResponse
from app.services.plan_service import PlanService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=SuccessResponse[list[PlanResponse]])
async def list_plans(
    active_only: bool = Query(True, description="Show only active plans"),
    db=Depends(get_database),
):
    """List all available plans."""
    plans = await PlanService(db).list_plans(active_only=active_only)
    return SuccessResponse(
        message="Plans retrieved successfully",
        data=[PlanResponse.from_document(plan) for plan in plans],
    )


@router.get("/{plan_id}", response_model=SuccessResponse[PlanResponse])
async def get_plan(plan_id: str, db=Depends(get_database)):
    """Get plan details by ID."""
    plan = await PlanService(db).get_plan_by_id(plan_id)
    if not plan:
        raise NotFoundException(resource="Plan", resource_id=plan_id)

    return SuccessResponse(
        message="Plan retrieved successfully",
        data=PlanResponse.from_document(plan),
    )


@router.post("/", response_model=SuccessResponse[PlanResponse])
async def create_plan(
    plan_data: PlanCreate,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    try:
        plan = await PlanService(db).create_plan(plan_data)

        logger.info(
            "Plan created",
            extra={"plan_id": str(plan.id), "admin_id": admin.user_id},
        )
        return SuccessResponse(
            message="Plan created successfully",
            data=PlanResponse.from_document(plan),
        )

    except ValidationException:
        raise
    except Exception as e:
        logger.error(
            "Error creating plan",
            extra={"plan_identifier": plan_data.identifier, "error": str(e)},
            exc_info=True,
        )
        raise


@router.put("/{plan_id}", response_model=SuccessResponse[PlanResponse])
async def update_plan(
    plan_id: str,
    plan_update: PlanUpdate,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    """Update a plan. Existing subscribers keep the terms they bought."""
    plan = await PlanService(db).update_plan(
        plan_id, plan_update, changed_by=admin.user_id
    )
    return SuccessResponse(
        message="Plan updated successfully",
        data=PlanResponse.from_document(plan),
    )


@router.post("/{plan_id}/impact", response_model=SuccessResponse[PlanChangeImpact])
async def analyze_plan_change(
    plan_id: str,
    plan_update: PlanUpdate,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    """Preview how many subscriptions a plan edit would touch."""
    impact = await PlanService(db).analyze_plan_change_impact(plan_id, plan_update)
    return SuccessResponse(message="Plan change impact analysed", data=impact)
