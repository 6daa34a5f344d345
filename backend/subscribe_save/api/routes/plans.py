"""
Plan Configuration Routes

Staff-managed discount and billing lead time per frequency. Subscriptions
take these terms when they are created; existing records keep theirs.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from subscribe_save.api.dependencies import (
    AuthContext,
    get_plan_lookup_service,
    require_staff,
)
from subscribe_save.infrastructure.db.models.subscription_plan import (
    SubscriptionPlanCreate,
    SubscriptionPlanModel,
)
from subscribe_save.infrastructure.services.plan_lookup_service import PlanLookupService


logger = logging.getLogger(__name__)

router = APIRouter()


class PlanRequest(BaseModel):
    """Request DTO for creating or replacing a frequency plan."""
    frequency: str = Field(..., description="WEEKLY, BIWEEKLY or TRIWEEKLY")
    name: Optional[str] = Field(default=None, max_length=100)
    discount_percent: float = Field(default=0.0, ge=0, le=100)
    billing_lead_hours: int = 85
    is_active: bool = True


@router.get("/plans", response_model=List[SubscriptionPlanModel])
async def list_plans(
    auth: AuthContext = Depends(require_staff),
    service: PlanLookupService = Depends(get_plan_lookup_service),
):
    return await service.list_plans(auth.shop)


@router.put("/plans", response_model=SubscriptionPlanModel)
async def save_plan(
    request: PlanRequest,
    auth: AuthContext = Depends(require_staff),
    service: PlanLookupService = Depends(get_plan_lookup_service),
):
    return await service.save_plan(
        SubscriptionPlanCreate(shop=auth.shop, **request.model_dump())
    )
