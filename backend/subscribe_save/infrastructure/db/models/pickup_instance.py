"""
Pickup Instance Database Model

One dated pickup, materialized by the daily rollover or booked at checkout.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field

from subscribe_save.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class PickupInstanceModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'pickup_instances' table."""

    __tablename__ = "pickup_instances"
    __table_args__ = (
        Index("ix_pickup_instances_shop_date", "shop", "pickup_date"),
        UniqueConstraint("shop", "external_order_id", name="uq_pickup_instances_shop_order"),
    )

    shop: str = Field(max_length=255)
    subscription_id: Optional[UUID] = Field(
        default=None,
        foreign_key="subscriptions.id",
        index=True,
        description="Originating subscription (null for one-off pickups)"
    )
    pickup_date: date
    time_slot: str = Field(max_length=100)
    status: str = Field(default="SCHEDULED", max_length=20)

    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    external_order_id: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Commerce order that booked this pickup at checkout"
    )
    order_reference: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None)
