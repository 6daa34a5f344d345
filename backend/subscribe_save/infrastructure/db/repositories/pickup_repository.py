"""
Pickup Instance Repository

Extends BaseRepository with pickup-specific queries.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscribe_save.domain.calendar import to_utc
from subscribe_save.domain.pickup import PickupInstance, PickupStatus
from subscribe_save.infrastructure.db.models.pickup_instance import PickupInstanceModel
from subscribe_save.infrastructure.db.repositories.base_repository import BaseRepository
from subscribe_save.infrastructure.exceptions import NotFoundError


class PickupRepository(BaseRepository[PickupInstanceModel]):
    """Repository for materialized pickups."""

    def __init__(self, session: AsyncSession):
        super().__init__(PickupInstanceModel, session)

    async def get_for_shop(self, shop: str, pickup_id: UUID) -> Optional[PickupInstance]:
        model = await self.get_model(pickup_id)
        if model is None or model.shop != shop:
            return None
        return self._to_domain(model)

    async def list_for_subscription(self, subscription_id: UUID) -> List[PickupInstance]:
        stmt = (
            select(PickupInstanceModel)
            .where(PickupInstanceModel.subscription_id == subscription_id)
            .order_by(PickupInstanceModel.pickup_date)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_for_date(self, shop: str, pickup_date: date) -> List[PickupInstance]:
        stmt = (
            select(PickupInstanceModel)
            .where(
                PickupInstanceModel.shop == shop,
                PickupInstanceModel.pickup_date == pickup_date,
            )
            .order_by(PickupInstanceModel.time_slot, PickupInstanceModel.created_at)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def get_by_order_id(self, shop: str, order_id: str) -> Optional[PickupInstance]:
        """The pickup a checkout order booked, if any."""
        stmt = select(PickupInstanceModel).where(
            PickupInstanceModel.shop == shop,
            PickupInstanceModel.external_order_id == order_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def add(self, pickup: PickupInstance) -> PickupInstance:
        model = PickupInstanceModel(**self._to_values(pickup), id=pickup.id)
        await self.add_model(model)
        return self._to_domain(model)

    async def save(self, pickup: PickupInstance) -> PickupInstance:
        model = await self.get_model(pickup.id)
        if model is None:
            raise NotFoundError(
                f"Pickup {pickup.id} not found",
                operation="update",
                table="pickup_instances",
            )
        for field, value in self._to_values(pickup).items():
            setattr(model, field, value)
        self._session.add(model)
        await self._session.flush()
        return self._to_domain(model)

    def _to_domain(self, model: PickupInstanceModel) -> PickupInstance:
        return PickupInstance(
            id=model.id,
            shop=model.shop,
            subscription_id=model.subscription_id,
            pickup_date=model.pickup_date,
            time_slot=model.time_slot,
            status=PickupStatus(model.status),
            customer_name=model.customer_name,
            customer_email=model.customer_email,
            customer_phone=model.customer_phone,
            external_order_id=model.external_order_id,
            order_reference=model.order_reference,
            notes=model.notes,
            created_at=to_utc(model.created_at),
            updated_at=to_utc(model.updated_at),
        )

    def _to_values(self, pickup: PickupInstance) -> dict:
        values = pickup.model_dump(exclude={"id"})
        values["status"] = pickup.status.value
        for field in ("created_at", "updated_at"):
            if values[field] is None:
                values.pop(field)
            else:
                values[field] = to_utc(values[field])
        return values
