"""Feature gate dependency for FastAPI endpoints."""

from __future__ import annotations

import logging

from fastapi import Depends

from app.core.auth_dependencies import TokenData, get_current_user_token
from app.core.database import get_database
from app.core.exceptions import EntitlementDeniedException
from app.schemas.entitlement import GateAccess
from app.services.entitlement_service import EntitlementService
from app.services.feature_gates import get_gate

logger = logging.getLogger(__name__)


def entitlement_required(gate_name: str):
    """
    Dependency factory that lets a request through only when the caller's
    entitlements open the named gate.

    Args:
        gate_name: Name of a row in the feature gate table

    Returns:
        FastAPI dependency function returning the GateAccess
    """
    if get_gate(gate_name) is None:
        raise ValueError(f"Unknown feature gate: {gate_name}")

    async def check_entitlement(
        token_data: TokenData = Depends(get_current_user_token),
        db=Depends(get_database),
    ) -> GateAccess:
        access = await EntitlementService(db).check_gate(token_data.user_id, gate_name)
        if not access.hasAccess:
            logger.warning(
                "Feature gate denied",
                extra={"user_id": token_data.user_id, "gate": gate_name},
            )
            raise EntitlementDeniedException(gate_name, details={"limit": access.limit})
        return access

    return check_entitlement
