"""
Pickup Instance Domain Models

A PickupInstance is one dated occurrence, materialized from a subscription
snapshot or booked by a checkout order. It is never deleted, only moved into a terminal status.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from subscribe_save.domain.events import DomainEvent, EventType
from subscribe_save.domain.subscription import CustomerInfo, Subscription, normalize_email
from subscribe_save.infrastructure.exceptions import StateConflictError


class PickupStatus(str, Enum):
    """Pickup instance lifecycle status."""
    SCHEDULED = "SCHEDULED"
    READY = "READY"
    PICKED_UP = "PICKED_UP"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


PICKUP_TRANSITIONS = {
    PickupStatus.SCHEDULED: {PickupStatus.READY, PickupStatus.CANCELLED, PickupStatus.NO_SHOW},
    PickupStatus.READY: {PickupStatus.PICKED_UP, PickupStatus.CANCELLED, PickupStatus.NO_SHOW},
    PickupStatus.PICKED_UP: set(),
    PickupStatus.CANCELLED: set(),
    PickupStatus.NO_SHOW: set(),
}


class PickupInstance(BaseModel):
    """One concrete, dated pickup."""
    id: UUID = Field(default_factory=uuid4)
    shop: str
    subscription_id: Optional[UUID] = None
    pickup_date: date
    time_slot: str
    status: PickupStatus = PickupStatus.SCHEDULED
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    external_order_id: Optional[str] = None
    order_reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return not PICKUP_TRANSITIONS[self.status]


class PickupStatusRequest(BaseModel):
    """Request DTO for moving a pickup to a new status."""
    status: PickupStatus
    notes: Optional[str] = Field(default=None, max_length=500)


def order_reference_for(pickup_id: UUID) -> str:
    """Short human reference shown to staff, e.g. SUB-1A2B3C."""
    return f"SUB-{pickup_id.hex[:6].upper()}"


def materialize(subscription: Subscription, created_at: datetime) -> PickupInstance:
    """Build the SCHEDULED instance for a subscription's next pickup."""
    pickup_id = uuid4()
    notes = None
    if subscription.has_one_time_reschedule:
        notes = "One-time reschedule"
        if subscription.one_time_reschedule_reason:
            notes = f"{notes}: {subscription.one_time_reschedule_reason}"

    return PickupInstance(
        id=pickup_id,
        shop=subscription.shop,
        subscription_id=subscription.id,
        pickup_date=subscription.next_pickup_date,
        time_slot=subscription.current_time_slot,
        customer_name=subscription.customer_name,
        customer_email=subscription.customer_email,
        customer_phone=subscription.customer_phone,
        order_reference=order_reference_for(pickup_id),
        notes=notes,
        created_at=created_at,
        updated_at=created_at,
    )


def book_order_pickup(
    shop: str,
    order_id: str,
    pickup_date: date,
    time_slot: str,
    customer: CustomerInfo,
    created_at: datetime,
    subscription_id: Optional[UUID] = None,
    order_name: Optional[str] = None,
) -> PickupInstance:
    """Build the SCHEDULED instance a customer booked at checkout."""
    pickup_id = uuid4()
    return PickupInstance(
        id=pickup_id,
        shop=shop,
        subscription_id=subscription_id,
        pickup_date=pickup_date,
        time_slot=time_slot,
        customer_name=customer.name,
        customer_email=normalize_email(customer.email),
        customer_phone=customer.phone,
        external_order_id=order_id,
        order_reference=order_name or order_reference_for(pickup_id),
        created_at=created_at,
        updated_at=created_at,
    )


def transition_pickup(
    pickup: PickupInstance,
    new_status: PickupStatus,
    at: datetime,
    notes: Optional[str] = None,
) -> tuple[PickupInstance, List[DomainEvent]]:
    """Move a pickup along its lifecycle, returning the new copy and its events."""
    if new_status not in PICKUP_TRANSITIONS[pickup.status]:
        raise StateConflictError(
            f"Cannot move pickup from {pickup.status.value} to {new_status.value}.",
            current_status=pickup.status.value,
            operation=new_status.value,
        )

    changes = {"status": new_status, "updated_at": at}
    if notes:
        changes["notes"] = f"{pickup.notes}\n{notes}" if pickup.notes else notes
    updated = pickup.model_copy(update=changes)

    if new_status == PickupStatus.READY:
        event_type = EventType.PICKUP_READY
    elif new_status == PickupStatus.CANCELLED:
        event_type = EventType.PICKUP_CANCELLED
    else:
        event_type = EventType.PICKUP_UPDATED

    event = DomainEvent(
        type=event_type,
        subscription_id=pickup.subscription_id,
        pickup_id=pickup.id,
        detail=new_status.value,
    )
    return updated, [event]
