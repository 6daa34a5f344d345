"""
Repository Layer for Subscribe & Save

Exports all repository classes for dependency injection.
"""

from subscribe_save.infrastructure.db.repositories.base_repository import BaseRepository
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.db.repositories.pickup_repository import PickupRepository
from subscribe_save.infrastructure.db.repositories.ingestion_event_repository import (
    IngestionEventRepository,
)
from subscribe_save.infrastructure.db.repositories.plan_repository import (
    SubscriptionPlanRepository,
)


__all__ = [
    "BaseRepository",
    "SubscriptionRepository",
    "PickupRepository",
    "IngestionEventRepository",
    "SubscriptionPlanRepository",
]
