"""
Rollover Service

Daily batch that turns scheduling intent into scheduling fact for one shop:
due ACTIVE subscriptions become SCHEDULED pickup instances and advance to
their next regular pickup; elapsed pauses are resumed.

Each subscription is its own unit of work. A failure on one is logged and
counted, and the sweep moves on to the next.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain import state_machine
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.events import DomainEvent, EventType
from subscribe_save.domain.pickup import materialize
from subscribe_save.domain.state_machine import AdvanceSchedule, Resume
from subscribe_save.domain.subscription import Actor, SubscriptionStatus
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher
from subscribe_save.infrastructure.services.subscription_service import (
    build_transition_context,
)


logger = logging.getLogger(__name__)


@dataclass
class RolloverError:
    subscription_id: UUID
    message: str


@dataclass
class RolloverResult:
    """Counts reported by one rollover sweep."""
    processed: int = 0
    created: int = 0
    errors: List[RolloverError] = field(default_factory=list)


@dataclass
class ShopSweepResult:
    """Auto-resume plus rollover outcome for one shop."""
    shop: str
    resumed: int = 0
    processed: int = 0
    created: int = 0
    errors: List[RolloverError] = field(default_factory=list)


class RolloverService:
    """
    Service running the daily rollover and auto-resume sweeps.

    Args:
        session_factory: Session factory (defaults to the app database)
        clock: Business clock (defaults to the configured shop timezone)
        dispatcher: Delivers calendar events for created pickups
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
    # Rollover
    # =========================================================================

    async def run_daily_rollover(self, shop: str) -> RolloverResult:
        """
        Materialize every due ACTIVE subscription and advance its schedule.

        Returns:
            RolloverResult with processed/created counts and per-subscription errors
        """
        today = self._clock.today()
        async with get_session_context(self._session_factory) as session:
            due_ids = await SubscriptionRepository(session).list_due_ids(shop, today)

        result = RolloverResult()
        logger.info(f"Rollover for {shop}: {len(due_ids)} subscription(s) due on or before {today}")

        for subscription_id in due_ids:
            result.processed += 1
            try:
                events = await self._roll_over_one(subscription_id)
            except Exception as e:
                logger.error(f"Failed to process subscription {subscription_id}: {e}")
                result.errors.append(RolloverError(subscription_id, str(e)))
                continue

            if events:
                result.created += 1
                await self._dispatcher.dispatch(events)

        logger.info(
            f"Rollover for {shop} done: processed={result.processed} "
            f"created={result.created} errors={len(result.errors)}"
        )
        return result

    async def _roll_over_one(self, subscription_id: UUID) -> List[DomainEvent]:
        """Create one pickup and advance, atomically. Empty list if no longer due."""
        today = self._clock.today()
        async with get_session_context(self._session_factory) as session:
            subscriptions = SubscriptionRepository(session)
            subscription = await subscriptions.get(subscription_id)
            if (
                subscription is None
                or subscription.status != SubscriptionStatus.ACTIVE
                or subscription.next_pickup_date is None
                or subscription.next_pickup_date > today
            ):
                return []

            pickup = await PickupRepository(session).add(
                materialize(subscription, self._clock.now_utc())
            )

            ctx = build_transition_context(self._clock, Actor.system(), self._settings)
            transition = state_machine.apply(subscription, AdvanceSchedule(), ctx)
            await subscriptions.save(transition.subscription)

        logger.info(
            f"Created pickup {pickup.id} for subscription {subscription_id} on "
            f"{pickup.pickup_date}, next pickup: {transition.subscription.next_pickup_date}"
        )
        pickup_event = DomainEvent(
            EventType.PICKUP_CREATED, subscription_id, pickup_id=pickup.id
        )
        return [pickup_event, *transition.events]

    # =========================================================================
    # Auto-resume
    # =========================================================================

    async def run_auto_resume_sweep(self, shop: str) -> int:
        """
        Resume PAUSED subscriptions whose pause window has elapsed.

        Subscriptions paused for repeated billing failures are left alone;
        they need a staff decision.

        Returns:
            Number of subscriptions resumed
        """
        today = self._clock.today()
        async with get_session_context(self._session_factory) as session:
            candidate_ids = await SubscriptionRepository(session).list_resume_due_ids(shop, today)

        resumed = 0
        for subscription_id in candidate_ids:
            try:
                events = await self._resume_one(subscription_id)
            except Exception as e:
                logger.error(f"Failed to auto-resume subscription {subscription_id}: {e}")
                continue

            if events is not None:
                resumed += 1
                await self._dispatcher.dispatch(events)

        logger.info(f"Auto-resumed {resumed} subscription(s) for {shop}")
        return resumed

    async def _resume_one(self, subscription_id: UUID) -> Optional[List[DomainEvent]]:
        async with get_session_context(self._session_factory) as session:
            subscriptions = SubscriptionRepository(session)
            subscription = await subscriptions.get(subscription_id)
            if subscription is None or subscription.status != SubscriptionStatus.PAUSED:
                return None

            if subscription.is_billing_failure_pause(self._settings.max_billing_failures):
                logger.warning(
                    f"Skipping auto-resume for subscription {subscription_id}: "
                    f"{subscription.pause_reason} (manual intervention required)"
                )
                return None

            ctx = build_transition_context(self._clock, Actor.system(), self._settings)
            transition = state_machine.apply(
                subscription, Resume(comment="pause period ended"), ctx
            )
            await subscriptions.save(transition.subscription)

        logger.info(
            f"Auto-resumed subscription {subscription_id}, next pickup "
            f"{transition.subscription.next_pickup_date}"
        )
        return transition.events

    # =========================================================================
    # All shops
    # =========================================================================

    async def run_all_shops(self) -> List[ShopSweepResult]:
        """Auto-resume then roll over every shop with open subscriptions."""
        async with get_session_context(self._session_factory) as session:
            shops = await SubscriptionRepository(session).list_shops_with_open_subscriptions()

        results = []
        for shop in shops:
            resumed = await self.run_auto_resume_sweep(shop)
            rollover = await self.run_daily_rollover(shop)
            results.append(ShopSweepResult(
                shop=shop,
                resumed=resumed,
                processed=rollover.processed,
                created=rollover.created,
                errors=rollover.errors,
            ))
        return results
