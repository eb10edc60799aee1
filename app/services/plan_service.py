from __future__ import annotations

import logging

from pymongo.errors import DuplicateKeyError

from app.core.exceptions import (
    NotFoundException,
    UnresolvedReferenceException,
    ValidationException,
)
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus
from app.schemas.plan import (
    PlanChangeImpact,
    PlanCreate,
    PlanFieldChange,
    PlanUpdate,
)
from app.utils.validators import to_object_id

logger = logging.getLogger(__name__)

SNAPSHOT_NOTE = (
    "Existing subscriptions will continue with their original plan details. "
    "Only new subscriptions will get the updated plan."
)


class PlanService:
    """Plan catalog: lookups for the engine plus minimal admin writes."""

    def __init__(self, db):
        self.db = db

    async def get_plan_by_id(self, plan_id: str) -> Plan | None:
        """Get plan by ID. Malformed ids resolve to None like unknown ones."""
        oid = to_object_id(plan_id)
        if oid is None:
            return None
        try:
            return await Plan.get(oid)
        except Exception as e:
            logger.error(
                "Error getting plan by ID",
                extra={"plan_id": str(plan_id), "error": str(e)},
                exc_info=True,
            )
            raise

    async def require_plan(self, plan_id: str) -> Plan:
        """Resolve a plan reference or raise UnresolvedReferenceException."""
        plan = await self.get_plan_by_id(plan_id)
        if not plan:
            raise UnresolvedReferenceException("Plan", str(plan_id))
        return plan

    async def list_plans(self, active_only: bool = True) -> list[Plan]:
        try:
            query = {"isActive": True} if active_only else {}
            plans = await Plan.find(query).sort("sortOrder").to_list()

            logger.info(
                "Plans listed",
                extra={"count": len(plans), "active_only": active_only},
            )
            return plans

        except Exception as e:
            logger.error("Error listing plans", extra={"error": str(e)}, exc_info=True)
            raise

    async def create_plan(self, plan_data: PlanCreate) -> Plan:
        try:
            logger.info("Creating plan", extra={"plan_identifier": plan_data.identifier})

            plan = Plan(**plan_data.model_dump())
            await plan.insert()

            logger.info(
                "Plan created", extra={"plan_id": str(plan.id), "plan_name": plan.name}
            )
            return plan

        except DuplicateKeyError as e:
            raise ValidationException(
                "A plan with this identifier already exists",
                details={"identifier": plan_data.identifier},
            ) from e
        except Exception as e:
            logger.error(
                "Error creating plan",
                extra={"plan_identifier": plan_data.identifier, "error": str(e)},
                exc_info=True,
            )
            raise

    async def update_plan(
        self, plan_id: str, plan_update: PlanUpdate, changed_by: str | None = None
    ) -> Plan:
        """
        Update a plan in place.

        Existing subscribers are unaffected; they read their snapshot. Price
        changes are kept in priceHistory.
        """
        try:
            plan = await self.get_plan_by_id(plan_id)
            if not plan:
                raise NotFoundException(resource="Plan", resource_id=plan_id)

            update_data = plan_update.model_dump(exclude_unset=True)
            reason = update_data.pop("priceChangeReason", None)
            if not update_data:
                return plan

            new_price = update_data.pop("price", None)
            if new_price is not None:
                plan.record_price_change(new_price, to_object_id(changed_by), reason)

            for field, value in update_data.items():
                if field == "features":
                    value = plan_update.features
                elif field == "limits":
                    value = plan_update.limits
                setattr(plan, field, value)

            await plan.save()

            logger.info(
                "Plan updated",
                extra={"plan_id": plan_id, "fields": sorted(update_data)},
            )
            return plan

        except NotFoundException:
            raise
        except Exception as e:
            logger.error(
                "Error updating plan",
                extra={"plan_id": plan_id, "error": str(e)},
                exc_info=True,
            )
            raise

    async def analyze_plan_change_impact(
        self, plan_id: str, plan_update: PlanUpdate
    ) -> PlanChangeImpact:
        """Report which subscriptions a pending plan edit would reach."""
        try:
            plan = await self.get_plan_by_id(plan_id)
            if not plan:
                raise NotFoundException(resource="Plan", resource_id=plan_id)

            active = await Subscription.find(
                {"planId": plan.id, "status": SubscriptionStatus.ACTIVE}
            ).count()
            pending = await Subscription.find(
                {"planId": plan.id, "status": SubscriptionStatus.PENDING}
            ).count()

            changes: list[PlanFieldChange] = []
            if plan_update.price is not None and plan_update.price != plan.price:
                changes.append(
                    PlanFieldChange(
                        field="price",
                        type="increase" if plan_update.price > plan.price else "decrease",
                        oldValue=plan.price,
                        newValue=plan_update.price,
                    )
                )

            if plan_update.limits is not None:
                current = plan.limits.model_dump()
                for key, value in plan_update.limits.model_dump().items():
                    if current.get(key) != value:
                        changes.append(
                            PlanFieldChange(
                                field=f"limits.{key}",
                                type="limit_change",
                                oldValue=current.get(key),
                                newValue=value,
                            )
                        )

            if plan_update.features is not None and plan_update.features != plan.features:
                changes.append(PlanFieldChange(field="features", type="features_modified"))

            impact = PlanChangeImpact(
                planId=str(plan.id),
                planName=plan.name,
                activeSubscriptions=active,
                pendingSubscriptions=pending,
                totalAffected=active + pending,
                changes=changes,
                note=SNAPSHOT_NOTE,
            )
            logger.info(
                "Plan change impact analysed",
                extra={
                    "plan_id": plan_id,
                    "change_count": len(changes),
                    "total_affected": impact.totalAffected,
                },
            )
            return impact

        except NotFoundException:
            raise
        except Exception as e:
            logger.error(
                "Error analysing plan change impact",
                extra={"plan_id": plan_id, "error": str(e)},
                exc_info=True,
            )
            raise
