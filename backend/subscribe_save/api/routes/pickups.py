"""
Pickup API Routes

Staff view of the day's pickups and status changes on them.
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from subscribe_save.api.dependencies import (
    AuthContext,
    get_auth_context,
    get_pickup_service,
    get_subscription_service,
    require_staff,
)
from subscribe_save.domain.pickup import PickupInstance, PickupStatusRequest
from subscribe_save.infrastructure.exceptions import NotFoundError
from subscribe_save.infrastructure.services.pickup_service import PickupService
from subscribe_save.infrastructure.services.subscription_service import (
    NOT_FOUND_MESSAGE,
    SubscriptionService,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/pickups", response_model=List[PickupInstance])
async def list_pickups(
    pickup_date: Optional[date] = None,
    auth: AuthContext = Depends(require_staff),
    service: PickupService = Depends(get_pickup_service),
):
    """Pickups for a date, today in the shop timezone if omitted."""
    return await service.list_for_date(auth.shop, pickup_date)


@router.get("/subscriptions/{subscription_id}/pickups", response_model=List[PickupInstance])
async def list_subscription_pickups(
    subscription_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    pickups: PickupService = Depends(get_pickup_service),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    if await subscriptions.get(auth.shop, subscription_id, auth.actor) is None:
        raise NotFoundError(NOT_FOUND_MESSAGE, operation="list_pickups", table="subscriptions")
    return await pickups.list_for_subscription(subscription_id)


@router.post("/pickups/{pickup_id}/status", response_model=PickupInstance)
async def update_pickup_status(
    pickup_id: UUID,
    request: PickupStatusRequest,
    auth: AuthContext = Depends(require_staff),
    service: PickupService = Depends(get_pickup_service),
):
    """Move a pickup to READY, PICKED_UP, CANCELLED or NO_SHOW."""
    return await service.update_status(auth.shop, pickup_id, request.status, request.notes)
