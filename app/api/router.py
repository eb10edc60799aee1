from fastapi import APIRouter

from app.api.endpoints import addon, entitlement, plan, subscription

# Main API router
api_router = APIRouter()

api_router.include_router(plan.router, prefix="/plans", tags=["Plans"])
api_router.include_router(addon.router, prefix="/addons", tags=["Add-ons"])
api_router.include_router(
    subscription.router, prefix="/subscriptions", tags=["Subscriptions"]
)
api_router.include_router(
    entitlement.router, prefix="/entitlements", tags=["Entitlements"]
)
