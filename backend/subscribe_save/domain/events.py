"""
Domain Events

Emitted by pure transitions and dispatched to collaborators only after the
owning unit of work has committed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID


class EventType(str, Enum):
    """Kinds of events produced by subscription and pickup transitions."""
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_LINKED = "subscription.linked"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_RESUMED = "subscription.resumed"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_RESCHEDULED = "subscription.rescheduled"
    SUBSCRIPTION_ADVANCED = "subscription.advanced"
    BILLING_FAILED = "subscription.billing_failed"
    BILLING_SUCCEEDED = "subscription.billing_succeeded"
    PICKUP_CREATED = "pickup.created"
    PICKUP_UPDATED = "pickup.updated"
    PICKUP_READY = "pickup.ready"
    PICKUP_CANCELLED = "pickup.cancelled"


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened to a subscription or pickup."""
    type: EventType
    subscription_id: Optional[UUID] = None
    pickup_id: Optional[UUID] = None
    detail: Optional[str] = None
