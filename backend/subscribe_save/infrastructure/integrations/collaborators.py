"""
External Collaborators

Calendar sync and pickup notifications are best-effort side channels. They
are driven by domain events after the owning transaction has committed, and
a failure here is logged and never propagates back into scheduling state.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, runtime_checkable
from uuid import UUID

from subscribe_save.domain.events import DomainEvent, EventType


logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Outcome of a ready-for-pickup notification."""
    success: bool
    method: Optional[str] = None  # SMS, EMAIL or None
    error: Optional[str] = None


@runtime_checkable
class CalendarSync(Protocol):
    """Mirrors pickups into the shop's calendar."""

    async def create_event(self, pickup_id: UUID) -> None:
        ...

    async def update_event(self, pickup_id: UUID) -> None:
        ...

    async def delete_event(self, pickup_id: UUID) -> None:
        ...


@runtime_checkable
class NotificationSender(Protocol):
    """Tells the customer their order is ready."""

    async def send_ready_notification(self, pickup_id: UUID) -> NotificationResult:
        ...


class LoggingCalendarSync:
    """Default calendar adapter: records the call and does nothing else."""

    async def create_event(self, pickup_id: UUID) -> None:
        logger.debug(f"[CALENDAR] create event for pickup {pickup_id}")

    async def update_event(self, pickup_id: UUID) -> None:
        logger.debug(f"[CALENDAR] update event for pickup {pickup_id}")

    async def delete_event(self, pickup_id: UUID) -> None:
        logger.debug(f"[CALENDAR] delete event for pickup {pickup_id}")


class LoggingNotificationSender:
    """Default notification adapter used when no provider is configured."""

    async def send_ready_notification(self, pickup_id: UUID) -> NotificationResult:
        logger.info(f"[NOTIFY] pickup {pickup_id} is ready (no provider configured)")
        return NotificationResult(success=False, method=None, error="No provider configured")


class SideEffectDispatcher:
    """
    Routes committed domain events to collaborators.

    Each call is isolated: one failing collaborator does not stop the
    remaining events from being delivered.
    """

    def __init__(
        self,
        calendar: Optional[CalendarSync] = None,
        notifier: Optional[NotificationSender] = None,
    ):
        self._calendar = calendar or LoggingCalendarSync()
        self._notifier = notifier or LoggingNotificationSender()

    async def dispatch(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            try:
                await self._deliver(event)
            except Exception as e:
                logger.warning(
                    f"Side effect for {event.type.value} "
                    f"(subscription={event.subscription_id}, pickup={event.pickup_id}) failed: {e}"
                )

    async def _deliver(self, event: DomainEvent) -> None:
        if event.type == EventType.PICKUP_CREATED:
            await self._calendar.create_event(event.pickup_id)
        elif event.type == EventType.PICKUP_UPDATED:
            await self._calendar.update_event(event.pickup_id)
        elif event.type == EventType.PICKUP_CANCELLED:
            await self._calendar.delete_event(event.pickup_id)
        elif event.type == EventType.PICKUP_READY:
            await self._calendar.update_event(event.pickup_id)
            result = await self._notifier.send_ready_notification(event.pickup_id)
            if not result.success:
                logger.warning(
                    f"Ready notification for pickup {event.pickup_id} not sent: {result.error}"
                )
        else:
            logger.info(
                f"[EVENT] {event.type.value} subscription={event.subscription_id}"
                + (f" ({event.detail})" if event.detail else "")
            )
