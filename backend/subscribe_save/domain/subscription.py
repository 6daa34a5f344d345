"""
Subscription Domain Models

Domain models for pickup subscriptions following Clean Architecture.
Enums, DTOs, and domain entities for the subscription bounded context.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class Frequency(str, Enum):
    """Pickup cadence."""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    TRIWEEKLY = "TRIWEEKLY"

    @property
    def interval_count(self) -> int:
        """Number of weeks between pickups."""
        return _INTERVAL_COUNTS[self]

    @property
    def interval_days(self) -> int:
        return self.interval_count * 7

    @property
    def min_days_ahead(self) -> int:
        """Minimum distance of the first pickup after a (re)start."""
        return _MIN_DAYS_AHEAD[self]


_INTERVAL_COUNTS = {
    Frequency.WEEKLY: 1,
    Frequency.BIWEEKLY: 2,
    Frequency.TRIWEEKLY: 3,
}

_MIN_DAYS_AHEAD = {
    Frequency.WEEKLY: 1,
    Frequency.BIWEEKLY: 7,
    Frequency.TRIWEEKLY: 14,
}


class ActorRole(str, Enum):
    """Who is acting on a subscription."""
    CUSTOMER = "CUSTOMER"
    STAFF = "STAFF"
    SYSTEM = "SYSTEM"


class SubscriptionSource(str, Enum):
    """Inbound event path that created the record."""
    ORDER = "ORDER"
    CONTRACT = "CONTRACT"


def frequency_from_interval_count(count: Optional[int]) -> Optional[Frequency]:
    """Map a billing-interval count (weeks) to a frequency, None if unknown."""
    for frequency, weeks in _INTERVAL_COUNTS.items():
        if count == weeks:
            return frequency
    return None


def parse_frequency_label(label: Optional[str]) -> Optional[Frequency]:
    """Parse labels like "weekly", "Bi-Weekly" or "TRIWEEKLY"."""
    if not label:
        return None
    normalized = label.strip().upper().replace("-", "").replace(" ", "")
    try:
        return Frequency(normalized)
    except ValueError:
        return None


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


# =============================================================================
# Value Objects
# =============================================================================

@dataclass(frozen=True)
class PlanTerms:
    """Discount and billing lead time resolved for one frequency."""
    frequency: Frequency
    discount_percent: float
    billing_lead_hours: int
    name: Optional[str] = None


@dataclass(frozen=True)
class CustomerInfo:
    """Customer snapshot carried by inbound events."""
    email: Optional[str]
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class Actor:
    """Identity performing an action."""
    role: ActorRole
    email: Optional[str] = None

    @classmethod
    def customer(cls, email: str) -> "Actor":
        return cls(role=ActorRole.CUSTOMER, email=normalize_email(email))

    @classmethod
    def staff(cls, email: Optional[str] = None) -> "Actor":
        return cls(role=ActorRole.STAFF, email=normalize_email(email))

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=ActorRole.SYSTEM)

    @property
    def label(self) -> str:
        return self.role.value.lower()

    def can_act_on(self, subscription: "Subscription") -> bool:
        if self.role != ActorRole.CUSTOMER:
            return True
        return bool(self.email) and self.email == subscription.customer_email


DEFAULT_PLAN_TERMS = {
    Frequency.WEEKLY: PlanTerms(Frequency.WEEKLY, 10.0, 85, "Weekly Pickup"),
    Frequency.BIWEEKLY: PlanTerms(Frequency.BIWEEKLY, 5.0, 85, "Bi-Weekly Pickup"),
    Frequency.TRIWEEKLY: PlanTerms(Frequency.TRIWEEKLY, 2.5, 85, "Tri-Weekly Pickup"),
}


# =============================================================================
# Domain Entities
# =============================================================================

class AuditEntry(BaseModel):
    """One line of the append-only admin notes log."""
    at: datetime
    actor: str
    message: str

    def render(self) -> str:
        return f"{self.at.isoformat()}: {self.message}"


class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[UUID] = None
    shop: str
    external_contract_id: Optional[str] = None
    origin_order_id: Optional[str] = None
    source: SubscriptionSource = SubscriptionSource.ORDER

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    product_label: Optional[str] = None

    preferred_day: int = 2
    preferred_time_slot: str = "12:00 PM - 2:00 PM"
    preferred_time_slot_start: str = "12:00"
    # Set while the day or slot is still the configured fallback
    preferred_day_defaulted: bool = False
    time_slot_defaulted: bool = False

    frequency: Frequency = Frequency.WEEKLY
    discount_percent: float = 10.0
    billing_lead_hours: int = 85

    next_pickup_date: Optional[date] = None
    next_billing_date: Optional[datetime] = None

    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    paused_until: Optional[date] = None
    pause_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    one_time_reschedule_date: Optional[date] = None
    one_time_reschedule_time_slot: Optional[str] = None
    one_time_reschedule_reason: Optional[str] = None
    one_time_reschedule_by: Optional[ActorRole] = None
    one_time_reschedule_at: Optional[datetime] = None

    billing_failure_count: int = 0
    billing_failure_reason: Optional[str] = None
    billing_cycle_count: int = 0
    last_billing_status: Optional[str] = None
    last_billing_attempt_at: Optional[datetime] = None

    admin_notes: list[AuditEntry] = Field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def has_one_time_reschedule(self) -> bool:
        return self.one_time_reschedule_date is not None

    @property
    def current_time_slot(self) -> str:
        """Slot of the next pickup, honouring a pending one-time override."""
        if self.has_one_time_reschedule and self.one_time_reschedule_time_slot:
            return self.one_time_reschedule_time_slot
        return self.preferred_time_slot

    def is_billing_failure_pause(self, max_failures: int) -> bool:
        return (
            self.status == SubscriptionStatus.PAUSED
            and self.billing_failure_count >= max_failures
            and (self.pause_reason or "").startswith("Billing failed")
        )


class ActionResult(BaseModel):
    """Outcome of a customer/staff action."""
    success: bool
    message: str
    subscription: Optional[Subscription] = None


# =============================================================================
# Request/Response DTOs
# =============================================================================

class PauseRequest(BaseModel):
    """Request DTO for pausing a subscription."""
    reason: Optional[str] = Field(default=None, max_length=500)
    paused_until: Optional[date] = Field(
        default=None,
        description="Auto-resume date (omit for an indefinite pause)"
    )


class ResumeRequest(BaseModel):
    """Request DTO for resuming a subscription."""
    comment: Optional[str] = Field(default=None, max_length=500)


class CancelRequest(BaseModel):
    """Request DTO for cancelling a subscription."""
    reason: Optional[str] = Field(default=None, max_length=500)


class OneTimeRescheduleRequest(BaseModel):
    """Request DTO for moving only the next pickup."""
    new_pickup_date: date
    time_slot: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class PermanentRescheduleRequest(BaseModel):
    """Request DTO for changing the regular pickup day/time."""
    preferred_day: int = Field(..., description="0 = Sunday ... 6 = Saturday")
    time_slot: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class BillingLeadHoursRequest(BaseModel):
    """Request DTO for staff changes to billing lead time."""
    billing_lead_hours: int
