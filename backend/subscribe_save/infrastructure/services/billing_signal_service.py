"""
Billing Signal Service

Records billing attempt outcomes reported by the commerce platform. This
system never charges anyone; it only tracks failures (pausing after too many)
and successful cycles.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain import state_machine
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.state_machine import (
    Command,
    RecordBillingFailure,
    RecordBillingSuccess,
)
from subscribe_save.domain.subscription import ActionResult, Actor
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.repositories.ingestion_event_repository import (
    IngestionEventRepository,
)
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.exceptions import StateConflictError, ValidationError
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher
from subscribe_save.infrastructure.services.subscription_service import (
    build_transition_context,
)


logger = logging.getLogger(__name__)


BILLING_SUCCESS_TOPIC = "subscription_billing_attempts/success"
BILLING_FAILURE_TOPIC = "subscription_billing_attempts/failure"


class BillingSignalService:
    """Applies billing success/failure signals to subscriptions."""

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

    async def record_success(
        self,
        shop: str,
        attempt_id: str,
        contract_id: str,
    ) -> ActionResult:
        """Reset the failure counter and count one more billing cycle."""
        return await self._record(
            shop, BILLING_SUCCESS_TOPIC, attempt_id, contract_id, RecordBillingSuccess()
        )

    async def record_failure(
        self,
        shop: str,
        attempt_id: str,
        contract_id: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> ActionResult:
        """Count a failure; the subscription pauses once the limit is reached."""
        command = RecordBillingFailure(error_code=error_code, error_message=error_message)
        return await self._record(shop, BILLING_FAILURE_TOPIC, attempt_id, contract_id, command)

    async def _record(
        self,
        shop: str,
        topic: str,
        attempt_id: str,
        contract_id: str,
        command: Command,
    ) -> ActionResult:
        if not shop or not attempt_id or not contract_id:
            raise ValidationError(
                "Malformed billing payload: shop, attempt id and contract id are required"
            )

        now = self._clock.now_utc()
        try:
            async with get_session_context(self._session_factory) as session:
                processed = IngestionEventRepository(session)
                if await processed.is_processed(shop, topic, str(attempt_id)):
                    return ActionResult(success=True, message="Billing attempt already processed.")

                subscriptions = SubscriptionRepository(session)
                subscription = await subscriptions.get_by_contract_id(shop, str(contract_id))
                if subscription is None:
                    logger.warning(
                        f"Billing attempt {attempt_id} for unknown contract {contract_id} ({shop})"
                    )
                    return ActionResult(success=False, message="Subscription not found.")

                ctx = build_transition_context(self._clock, Actor.system(), self._settings)
                transition = state_machine.apply(subscription, command, ctx)
                saved = await subscriptions.save(transition.subscription)
                await processed.mark_processed(
                    shop, topic, str(attempt_id), processed_at=now, subscription_id=saved.id
                )
        except (StateConflictError, ValidationError) as e:
            logger.info(f"Billing signal {topic} ignored for contract {contract_id}: {e.message}")
            return ActionResult(success=False, message=e.message)
        except IntegrityError:
            logger.info(f"Billing attempt {attempt_id} raced a duplicate delivery")
            return ActionResult(success=True, message="Billing attempt already processed.")

        logger.info(
            f"Billing {topic.rsplit('/', 1)[-1]} recorded for subscription {saved.id} "
            f"(failures={saved.billing_failure_count}, status={saved.status.value})"
        )
        await self._dispatcher.dispatch(transition.events)
        return ActionResult(success=True, message=transition.message, subscription=saved)
