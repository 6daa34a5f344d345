"""
Ingestion Event Repository

DB-backed processed-event tracking for inbound webhooks.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from subscribe_save.domain.calendar import to_utc
from subscribe_save.infrastructure.db.models.ingestion_event import IngestionEventModel
from subscribe_save.infrastructure.db.repositories.base_repository import BaseRepository


class IngestionEventRepository(BaseRepository[IngestionEventModel]):
    """Repository for the idempotency table."""

    def __init__(self, session: AsyncSession):
        super().__init__(IngestionEventModel, session)

    async def find(self, shop: str, topic: str, external_id: str) -> Optional[IngestionEventModel]:
        """Get the processed marker for an event, if any."""
        stmt = select(IngestionEventModel).where(
            IngestionEventModel.shop == shop,
            IngestionEventModel.topic == topic,
            IngestionEventModel.external_id == external_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_processed(self, shop: str, topic: str, external_id: str) -> bool:
        return await self.find(shop, topic, external_id) is not None

    async def mark_processed(
        self,
        shop: str,
        topic: str,
        external_id: str,
        processed_at: datetime,
        subscription_id: Optional[UUID] = None,
        payload: Optional[dict] = None,
    ) -> IngestionEventModel:
        """
        Record an event as processed.

        Flushes immediately so a concurrent duplicate raises IntegrityError
        inside the caller's unit of work.
        """
        event = IngestionEventModel(
            shop=shop,
            topic=topic,
            external_id=external_id,
            subscription_id=subscription_id,
            payload=payload,
            processed_at=to_utc(processed_at),
        )
        return await self.add_model(event)
