"""
Subscription Plan Model

Per-shop configuration of discount and billing lead time for each frequency.
"""

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from subscribe_save.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionPlanModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'subscription_plans' table."""

    __tablename__ = "subscription_plans"
    __table_args__ = (
        UniqueConstraint("shop", "frequency", name="uq_subscription_plans_shop_frequency"),
    )

    shop: str = Field(max_length=255, index=True)
    frequency: str = Field(max_length=20)
    name: Optional[str] = Field(default=None, max_length=100)
    discount_percent: float = Field(default=0.0)
    billing_lead_hours: int = Field(default=85)
    is_active: bool = Field(default=True)


class SubscriptionPlanCreate(SQLModel):
    """Schema for creating or replacing a plan row."""
    shop: str
    frequency: str
    name: Optional[str] = None
    discount_percent: float = 0.0
    billing_lead_hours: int = 85
    is_active: bool = True
