"""
Subscription API Routes

Customer and staff actions on pickup subscriptions. Actions always answer
200 with an ActionResult; a rejected action has success=False and a
user-facing message.
"""

import logging
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from subscribe_save.api.dependencies import (
    AuthContext,
    get_auth_context,
    get_subscription_service,
    require_staff,
)
from subscribe_save.domain.state_machine import format_audit_log
from subscribe_save.domain.subscription import (
    ActionResult,
    BillingLeadHoursRequest,
    CancelRequest,
    OneTimeRescheduleRequest,
    PauseRequest,
    PermanentRescheduleRequest,
    ResumeRequest,
    Subscription,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.services.subscription_service import (
    NOT_FOUND_MESSAGE,
    SubscriptionService,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Queries
# =============================================================================

@router.get("/subscriptions", response_model=List[Subscription])
async def list_subscriptions(
    status_filter: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Customers see their own subscriptions, staff see the whole shop."""
    return await service.list_for_actor(auth.shop, auth.actor, status_filter)


@router.get("/subscriptions/stats", response_model=Dict[str, int])
async def get_subscription_stats(
    auth: AuthContext = Depends(require_staff),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.get_stats(auth.shop)


@router.get("/subscriptions/{subscription_id}", response_model=Subscription)
async def get_subscription(
    subscription_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = await service.get(auth.shop, subscription_id, auth.actor)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_MESSAGE)
    return subscription


@router.get("/subscriptions/{subscription_id}/notes", response_class=PlainTextResponse)
async def get_subscription_notes(
    subscription_id: UUID,
    auth: AuthContext = Depends(require_staff),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Admin notes as "timestamp: message" lines, oldest first."""
    subscription = await service.get(auth.shop, subscription_id, auth.actor)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_MESSAGE)
    return format_audit_log(subscription)


# =============================================================================
# Lifecycle Actions
# =============================================================================

@router.post("/subscriptions/{subscription_id}/pause", response_model=ActionResult)
async def pause_subscription(
    subscription_id: UUID,
    request: PauseRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.pause(
        auth.shop, subscription_id, auth.actor,
        reason=request.reason, paused_until=request.paused_until,
    )


@router.post("/subscriptions/{subscription_id}/resume", response_model=ActionResult)
async def resume_subscription(
    subscription_id: UUID,
    request: Optional[ResumeRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    comment = request.comment if request else None
    return await service.resume(auth.shop, subscription_id, auth.actor, comment=comment)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=ActionResult)
async def cancel_subscription(
    subscription_id: UUID,
    request: Optional[CancelRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    reason = request.reason if request else None
    return await service.cancel(auth.shop, subscription_id, auth.actor, reason=reason)


# =============================================================================
# Rescheduling
# =============================================================================

@router.post("/subscriptions/{subscription_id}/reschedule", response_model=ActionResult)
async def reschedule_next_pickup(
    subscription_id: UUID,
    request: OneTimeRescheduleRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Move only the next pickup; the regular schedule is untouched."""
    return await service.one_time_reschedule(
        auth.shop, subscription_id, auth.actor,
        new_date=request.new_pickup_date,
        time_slot=request.time_slot,
        reason=request.reason,
    )


@router.post("/subscriptions/{subscription_id}/clear-reschedule", response_model=ActionResult)
async def clear_reschedule(
    subscription_id: UUID,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.clear_one_time_reschedule(auth.shop, subscription_id, auth.actor)


@router.post("/subscriptions/{subscription_id}/change-schedule", response_model=ActionResult)
async def change_schedule(
    subscription_id: UUID,
    request: PermanentRescheduleRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Change the regular pickup day (and optionally the time slot)."""
    return await service.permanent_reschedule(
        auth.shop, subscription_id, auth.actor,
        preferred_day=request.preferred_day,
        time_slot=request.time_slot,
        reason=request.reason,
    )


@router.post("/subscriptions/{subscription_id}/billing-lead-hours", response_model=ActionResult)
async def update_billing_lead_hours(
    subscription_id: UUID,
    request: BillingLeadHoursRequest,
    auth: AuthContext = Depends(require_staff),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.update_billing_lead_hours(
        auth.shop, subscription_id, auth.actor, request.billing_lead_hours
    )
