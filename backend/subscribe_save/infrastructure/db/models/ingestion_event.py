"""
Ingestion Event Model

One row per processed inbound event. Existence of the row is the
idempotency guard for webhook redelivery.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field

from subscribe_save.infrastructure.db.models.base import UUIDMixin, utc_now


class IngestionEventModel(UUIDMixin, table=True):
    """Maps to the 'ingestion_events' table."""

    __tablename__ = "ingestion_events"
    __table_args__ = (
        UniqueConstraint("shop", "topic", "external_id", name="uq_ingestion_events_key"),
    )

    shop: str = Field(max_length=255)
    topic: str = Field(max_length=100)
    external_id: str = Field(max_length=255)

    subscription_id: Optional[UUID] = Field(
        default=None,
        description="Subscription the event produced or matched"
    )
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    processed_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
