"""
Subscription Plan Repository

Per-shop frequency configuration.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscribe_save.infrastructure.db.models.subscription_plan import (
    SubscriptionPlanCreate,
    SubscriptionPlanModel,
)
from subscribe_save.infrastructure.db.repositories.base_repository import BaseRepository


class SubscriptionPlanRepository(BaseRepository[SubscriptionPlanModel]):
    """Repository for frequency plans."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionPlanModel, session)

    async def find_active(self, shop: str, frequency: str) -> Optional[SubscriptionPlanModel]:
        stmt = select(SubscriptionPlanModel).where(
            SubscriptionPlanModel.shop == shop,
            SubscriptionPlanModel.frequency == frequency,
            SubscriptionPlanModel.is_active.is_(True),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_shop(self, shop: str) -> List[SubscriptionPlanModel]:
        stmt = (
            select(SubscriptionPlanModel)
            .where(SubscriptionPlanModel.shop == shop)
            .order_by(SubscriptionPlanModel.frequency)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(self, data: SubscriptionPlanCreate) -> SubscriptionPlanModel:
        """Create the plan for (shop, frequency) or overwrite its terms."""
        stmt = select(SubscriptionPlanModel).where(
            SubscriptionPlanModel.shop == data.shop,
            SubscriptionPlanModel.frequency == data.frequency,
        )
        result = await self._session.execute(stmt)
        plan = result.scalar_one_or_none()

        if plan is None:
            return await self.add_model(SubscriptionPlanModel.model_validate(data))

        for field, value in data.model_dump(exclude={"shop", "frequency"}).items():
            setattr(plan, field, value)
        self._session.add(plan)
        await self._session.flush()
        return plan
