"""
Plan Lookup Service

Resolves a frequency to its discount and billing lead time from the shop's
plan configuration, falling back to hardcoded defaults when the shop has no
plan row or the lookup itself fails.
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from subscribe_save.config.settings import Settings, get_settings
from subscribe_save.domain.subscription import (
    DEFAULT_PLAN_TERMS,
    Frequency,
    PlanTerms,
    parse_frequency_label,
)
from subscribe_save.infrastructure.db.database import get_session_context
from subscribe_save.infrastructure.db.models.subscription_plan import (
    SubscriptionPlanCreate,
    SubscriptionPlanModel,
)
from subscribe_save.infrastructure.db.repositories.plan_repository import (
    SubscriptionPlanRepository,
)
from subscribe_save.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)


class PlanLookupService:
    """Read-only access to per-shop frequency plans."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    async def find_by_frequency(self, shop: str, frequency: Frequency) -> Optional[PlanTerms]:
        """Configured terms for a frequency, or None if the shop has none."""
        async with get_session_context(self._session_factory) as session:
            plan = await SubscriptionPlanRepository(session).find_active(shop, frequency.value)

        if plan is None:
            return None

        return PlanTerms(
            frequency=frequency,
            discount_percent=plan.discount_percent,
            billing_lead_hours=plan.billing_lead_hours,
            name=plan.name,
        )

    async def resolve(self, shop: str, frequency: Frequency) -> PlanTerms:
        """Configured terms, or the built-in defaults if none can be read."""
        try:
            terms = await self.find_by_frequency(shop, frequency)
        except Exception as e:
            logger.warning(f"Plan lookup failed for {shop} {frequency.value}, using defaults: {e}")
            terms = None

        if terms is None:
            default = DEFAULT_PLAN_TERMS[frequency]
            terms = PlanTerms(
                frequency=frequency,
                discount_percent=default.discount_percent,
                billing_lead_hours=self._settings.default_billing_lead_hours,
                name=default.name,
            )

        return terms

    # =========================================================================
    # Staff configuration
    # =========================================================================

    async def list_plans(self, shop: str) -> List[SubscriptionPlanModel]:
        async with get_session_context(self._session_factory) as session:
            return await SubscriptionPlanRepository(session).list_for_shop(shop)

    async def save_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlanModel:
        """
        Create or replace the plan for (shop, frequency).

        Raises:
            ValidationError: Unknown frequency or lead hours outside the bounds
        """
        frequency = parse_frequency_label(data.frequency)
        if frequency is None:
            raise ValidationError(f"Unknown frequency: {data.frequency}")
        if not (
            self._settings.min_billing_lead_hours
            <= data.billing_lead_hours
            <= self._settings.max_billing_lead_hours
        ):
            raise ValidationError(
                f"Billing lead hours must be between {self._settings.min_billing_lead_hours} "
                f"and {self._settings.max_billing_lead_hours}"
            )

        normalized = data.model_copy(update={"frequency": frequency.value})
        async with get_session_context(self._session_factory) as session:
            plan = await SubscriptionPlanRepository(session).upsert(normalized)
        logger.info(f"Saved {plan.frequency} plan for {plan.shop}")
        return plan
