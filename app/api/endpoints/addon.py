"""Add-on catalog API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from app.core.auth_dependencies import TokenData, require_admin
from app.core.database import get_database
from app.core.exceptions import NotFoundException
from app.schemas.addon import AddonCreate, AddonResponse
from app.schemas.response import SuccessResponse
from app.services.addon_service import AddonService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=SuccessResponse[list[AddonResponse]])
async def list_addons(
    active_only: bool = Query(True),
    category: str | None = Query(None),
    db=Depends(get_database),
):
    addons = await AddonService(db).list_addons(active_only=active_only, category=category)
    return SuccessResponse(
        message="Add-ons retrieved successfully",
        data=[AddonResponse.from_document(addon) for addon in addons],
    )


@router.get("/{addon_id}", response_model=SuccessResponse[AddonResponse])
async def get_addon(addon_id: str, db=Depends(get_database)):
    addon = await AddonService(db).get_addon_by_id(addon_id)
    if not addon:
        raise NotFoundException(resource="Add-on", resource_id=addon_id)
    return SuccessResponse(
        message="Add-on retrieved successfully",
        data=AddonResponse.from_document(addon),
    )


@router.post("/", response_model=SuccessResponse[AddonResponse])
async def create_addon(
    addon_data: AddonCreate,
    admin: TokenData = Depends(require_admin),
    db=Depends(get_database),
):
    addon = await AddonService(db).create_addon(addon_data)
    logger.info(
        "Add-on created", extra={"addon_id": str(addon.id), "admin_id": admin.user_id}
    )
    return SuccessResponse(
        message="Add-on created successfully",
        data=AddonResponse.from_document(addon),
    )
