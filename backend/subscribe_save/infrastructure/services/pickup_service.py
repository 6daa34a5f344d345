"""
Pickup Service

Staff status changes on materialized pickups. Moving a pickup to READY is
the trigger point for the ready notification; cancelling removes its
calendar event. Both happen after commit and are best-effort.
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.pickup import PickupInstance, PickupStatus, transition_pickup
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.exceptions import NotFoundError
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher


logger = logging.getLogger(__name__)


class PickupService:
    """Service for pickup instance lifecycle."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Optional[BusinessClock] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._session_factory = session_factory
        self._clock = clock or BusinessClock(settings.shop_timezone)
        self._dispatcher = dispatcher or SideEffectDispatcher()

    async def update_status(
        self,
        shop: str,
        pickup_id: UUID,
        status: PickupStatus,
        notes: Optional[str] = None,
    ) -> PickupInstance:
        """
        Move a pickup to a new status.

        Raises:
            NotFoundError: Pickup does not exist for this shop
            StateConflictError: Transition not allowed from the current status
        """
        async with get_session_context(self._session_factory) as session:
            repo = PickupRepository(session)
            pickup = await repo.get_for_shop(shop, pickup_id)
            if pickup is None:
                raise NotFoundError(
                    f"Pickup {pickup_id} not found",
                    operation="update_status",
                    table="pickup_instances",
                )

            updated, events = transition_pickup(pickup, status, self._clock.now_utc(), notes)
            saved = await repo.save(updated)

        logger.info(f"Pickup {pickup_id} moved {pickup.status.value} -> {status.value}")
        await self._dispatcher.dispatch(events)
        return saved

    async def list_for_date(self, shop: str, pickup_date: Optional[date] = None) -> List[PickupInstance]:
        """Pickups on a date (business-local today by default)."""
        async with get_session_context(self._session_factory) as session:
            return await PickupRepository(session).list_for_date(
                shop, pickup_date or self._clock.today()
            )

    async def list_for_subscription(self, subscription_id: UUID) -> List[PickupInstance]:
        async with get_session_context(self._session_factory) as session:
            return await PickupRepository(session).list_for_subscription(subscription_id)
