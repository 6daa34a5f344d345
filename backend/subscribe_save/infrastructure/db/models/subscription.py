"""
Subscription Database Model

SQLModel table for pickup subscription persistence.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlmodel import Field

from subscribe_save.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table for recurring pickup commitments.

    Maps to the 'subscriptions' table. The unique (shop, external_contract_id)
    pair backs up the time-windowed reconciliation of order/contract events.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("shop", "external_contract_id", name="uq_subscriptions_shop_contract"),
        Index("ix_subscriptions_shop_status_next_pickup", "shop", "status", "next_pickup_date"),
        Index("ix_subscriptions_shop_email", "shop", "customer_email"),
    )

    # Identity
    shop: str = Field(max_length=255, index=True)
    external_contract_id: Optional[str] = Field(default=None, max_length=255)
    origin_order_id: Optional[str] = Field(default=None, max_length=255, index=True)
    source: str = Field(default="ORDER", max_length=20)

    # Customer snapshot
    customer_name: Optional[str] = Field(default=None, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    product_label: Optional[str] = Field(default=None, max_length=255)

    # Schedule preference
    preferred_day: int = Field(default=2)
    preferred_time_slot: str = Field(max_length=100)
    preferred_time_slot_start: str = Field(default="12:00", max_length=5)
    preferred_day_defaulted: bool = Field(default=False)
    time_slot_defaulted: bool = Field(default=False)

    # Cadence
    frequency: str = Field(default="WEEKLY", max_length=20)
    discount_percent: float = Field(default=10.0)
    billing_lead_hours: int = Field(default=85)

    # Computed pointers
    next_pickup_date: Optional[date] = Field(default=None)
    next_billing_date: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True), index=True
    )

    # Status / pause
    status: str = Field(default="ACTIVE", max_length=20)
    paused_until: Optional[date] = Field(default=None)
    pause_reason: Optional[str] = Field(default=None)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # One-time override
    one_time_reschedule_date: Optional[date] = Field(default=None)
    one_time_reschedule_time_slot: Optional[str] = Field(default=None, max_length=100)
    one_time_reschedule_reason: Optional[str] = Field(default=None)
    one_time_reschedule_by: Optional[str] = Field(default=None, max_length=20)
    one_time_reschedule_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    # Billing signals
    billing_failure_count: int = Field(default=0)
    billing_failure_reason: Optional[str] = Field(default=None)
    billing_cycle_count: int = Field(default=0)
    last_billing_status: Optional[str] = Field(default=None, max_length=20)
    last_billing_attempt_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    # Append-only audit log: [{"at", "actor", "message"}, ...]
    admin_notes: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
