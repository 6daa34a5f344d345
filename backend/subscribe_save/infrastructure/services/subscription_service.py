"""
Subscription Service

Customer and staff actions on a subscription. Each action is one unit of
work: load, check ownership, apply the pure transition, save, commit, and
only then hand the emitted events to the side-effect dispatcher.

Validation, ownership and state-conflict failures come back as an
unsuccessful ActionResult carrying the user-facing message.
"""

import logging
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain import state_machine
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.state_machine import (
    Cancel,
    ClearOneTimeReschedule,
    Command,
    OneTimeReschedule,
    Pause,
    PermanentReschedule,
    Resume,
    TransitionContext,
    UpdateBillingLeadHours,
)
from subscribe_save.domain.subscription import (
    ActionResult,
    Actor,
    ActorRole,
    Subscription,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.exceptions import (
    OwnershipError,
    StateConflictError,
    ValidationError,
)
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher


logger = logging.getLogger(__name__)


NOT_FOUND_MESSAGE = "Subscription not found or you don't have access to it."


def build_transition_context(
    clock: BusinessClock,
    actor: Actor,
    settings: Settings,
) -> TransitionContext:
    """Transition context carrying the configured billing bounds."""
    return TransitionContext(
        clock=clock,
        actor=actor,
        min_lead_hours=settings.min_billing_lead_hours,
        max_lead_hours=settings.max_billing_lead_hours,
        max_billing_failures=settings.max_billing_failures,
    )


class SubscriptionService:
    """
    Service for subscription lifecycle actions.

    Args:
        session_factory: Session factory (defaults to the app database)
        clock: Business clock (defaults to the configured shop timezone)
        dispatcher: Delivers events to calendar/notification collaborators
        settings: Application settings
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Optional[BusinessClock] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock or BusinessClock(self._settings.shop_timezone)
        self._dispatcher = dispatcher or SideEffectDispatcher()

    # =========================================================================
    # Actions
    # =========================================================================

    async def pause(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        reason: Optional[str] = None,
        paused_until: Optional[date] = None,
    ) -> ActionResult:
        return await self._execute(
            shop, subscription_id, actor, Pause(reason=reason, paused_until=paused_until)
        )

    async def resume(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        comment: Optional[str] = None,
    ) -> ActionResult:
        return await self._execute(shop, subscription_id, actor, Resume(comment=comment))

    async def cancel(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> ActionResult:
        return await self._execute(shop, subscription_id, actor, Cancel(reason=reason))

    async def one_time_reschedule(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        new_date: date,
        time_slot: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ActionResult:
        command = OneTimeReschedule(new_date=new_date, time_slot=time_slot, reason=reason)
        return await self._execute(shop, subscription_id, actor, command)

    async def clear_one_time_reschedule(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
    ) -> ActionResult:
        return await self._execute(shop, subscription_id, actor, ClearOneTimeReschedule())

    async def permanent_reschedule(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        preferred_day: int,
        time_slot: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ActionResult:
        command = PermanentReschedule(
            preferred_day=preferred_day, time_slot=time_slot, reason=reason
        )
        return await self._execute(shop, subscription_id, actor, command)

    async def update_billing_lead_hours(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        hours: int,
    ) -> ActionResult:
        """Staff-only change of billing lead time."""
        if actor.role == ActorRole.CUSTOMER:
            return ActionResult(success=False, message="Only staff can change billing lead time.")
        return await self._execute(
            shop, subscription_id, actor, UpdateBillingLeadHours(hours=hours)
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, shop: str, subscription_id: UUID, actor: Actor) -> Optional[Subscription]:
        async with get_session_context(self._session_factory) as session:
            subscription = await SubscriptionRepository(session).get_for_shop(shop, subscription_id)
        if subscription is None or not actor.can_act_on(subscription):
            return None
        return subscription

    async def list_for_actor(
        self,
        shop: str,
        actor: Actor,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        """A customer sees their own subscriptions; staff see the shop's."""
        async with get_session_context(self._session_factory) as session:
            repo = SubscriptionRepository(session)
            if actor.role == ActorRole.CUSTOMER:
                if not actor.email:
                    return []
                subscriptions = await repo.list_for_customer(shop, actor.email)
                if status is not None:
                    subscriptions = [s for s in subscriptions if s.status == status]
                return subscriptions
            return await repo.list_for_shop(shop, status)

    async def get_stats(self, shop: str) -> Dict[str, int]:
        """Subscription counts by status for the admin dashboard."""
        async with get_session_context(self._session_factory) as session:
            return await SubscriptionRepository(session).count_by_status(shop)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _execute(
        self,
        shop: str,
        subscription_id: UUID,
        actor: Actor,
        command: Command,
    ) -> ActionResult:
        action = type(command).__name__
        try:
            async with get_session_context(self._session_factory) as session:
                repo = SubscriptionRepository(session)
                subscription = await repo.get_for_shop(shop, subscription_id)
                if subscription is None:
                    return ActionResult(success=False, message=NOT_FOUND_MESSAGE)
                if not actor.can_act_on(subscription):
                    raise OwnershipError(
                        NOT_FOUND_MESSAGE,
                        details={"subscription_id": str(subscription_id)},
                    )

                ctx = build_transition_context(self._clock, actor, self._settings)
                transition = state_machine.apply(subscription, command, ctx)
                saved = await repo.save(transition.subscription)
        except OwnershipError as e:
            logger.warning(
                f"{actor.label} {actor.email} denied {action} on subscription {subscription_id}"
            )
            return ActionResult(success=False, message=e.message)
        except (ValidationError, StateConflictError) as e:
            logger.info(f"{action} rejected for subscription {subscription_id}: {e.message}")
            return ActionResult(success=False, message=e.message)

        logger.info(f"{actor.label} {action} on subscription {subscription_id}")
        await self._dispatcher.dispatch(transition.events)
        return ActionResult(success=True, message=transition.message, subscription=saved)
