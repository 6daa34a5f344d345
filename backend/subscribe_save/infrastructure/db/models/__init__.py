"""
SQLModel ORM Models for Subscribe & Save

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from subscribe_save.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from subscribe_save.infrastructure.db.models.subscription import SubscriptionModel
from subscribe_save.infrastructure.db.models.pickup_instance import PickupInstanceModel
from subscribe_save.infrastructure.db.models.ingestion_event import IngestionEventModel
from subscribe_save.infrastructure.db.models.subscription_plan import (
    SubscriptionPlanModel,
    SubscriptionPlanCreate,
)


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Tables
    "SubscriptionModel",
    "PickupInstanceModel",
    "IngestionEventModel",
    "SubscriptionPlanModel",
    "SubscriptionPlanCreate",
]
