"""
Subscription State Machine

Every status change is a pure function of (Subscription, Command, context)
returning a new Subscription plus the events it produced. Illegal moves raise
StateConflictError, bad input raises ValidationError, and in both cases the
input record is left untouched.

    Command                  Allowed from
    -----------------------  ----------------
    Pause                    ACTIVE
    Resume                   PAUSED
    Cancel                   ACTIVE, PAUSED
    OneTimeReschedule        ACTIVE
    ClearOneTimeReschedule   ACTIVE, PAUSED
    PermanentReschedule      ACTIVE, PAUSED
    AdvanceSchedule          ACTIVE
    RecordBillingFailure     ACTIVE, PAUSED
    RecordBillingSuccess     ACTIVE, PAUSED
    UpdateBillingLeadHours   ACTIVE, PAUSED
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Union

from subscribe_save.domain.calendar import BusinessClock, day_name
from subscribe_save.domain.events import DomainEvent, EventType
from subscribe_save.domain.scheduling import (
    MAX_BILLING_LEAD_HOURS,
    MIN_BILLING_LEAD_HOURS,
    billing_date,
    extract_time_slot_start,
    next_pickup_after,
    next_pickup_from_today,
    validate_billing_lead_hours,
)
from subscribe_save.domain.subscription import (
    Actor,
    ActorRole,
    AuditEntry,
    Subscription,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.exceptions import (
    StateConflictError,
    ValidationError,
)


ACTIVE = SubscriptionStatus.ACTIVE
PAUSED = SubscriptionStatus.PAUSED
CANCELLED = SubscriptionStatus.CANCELLED


# =============================================================================
# Commands
# =============================================================================

@dataclass(frozen=True)
class Pause:
    reason: Optional[str] = None
    paused_until: Optional[date] = None


@dataclass(frozen=True)
class Resume:
    comment: Optional[str] = None


@dataclass(frozen=True)
class Cancel:
    reason: Optional[str] = None


@dataclass(frozen=True)
class OneTimeReschedule:
    new_date: date
    time_slot: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ClearOneTimeReschedule:
    pass


@dataclass(frozen=True)
class PermanentReschedule:
    preferred_day: int
    time_slot: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class AdvanceSchedule:
    """Rollover step: move past the pickup that was just materialized."""
    # Also move past a pickup already booked for this date (checkout orders)
    after: Optional[date] = None


@dataclass(frozen=True)
class RecordBillingFailure:
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class RecordBillingSuccess:
    pass


@dataclass(frozen=True)
class UpdateBillingLeadHours:
    hours: int


Command = Union[
    Pause,
    Resume,
    Cancel,
    OneTimeReschedule,
    ClearOneTimeReschedule,
    PermanentReschedule,
    AdvanceSchedule,
    RecordBillingFailure,
    RecordBillingSuccess,
    UpdateBillingLeadHours,
]


ALLOWED_FROM = {
    Pause: {ACTIVE},
    Resume: {PAUSED},
    Cancel: {ACTIVE, PAUSED},
    OneTimeReschedule: {ACTIVE},
    ClearOneTimeReschedule: {ACTIVE, PAUSED},
    PermanentReschedule: {ACTIVE, PAUSED},
    AdvanceSchedule: {ACTIVE},
    RecordBillingFailure: {ACTIVE, PAUSED},
    RecordBillingSuccess: {ACTIVE, PAUSED},
    UpdateBillingLeadHours: {ACTIVE, PAUSED},
}

CONFLICT_MESSAGES = {
    (Pause, PAUSED): "Subscription is already paused.",
    (Pause, CANCELLED): "Cannot pause a cancelled subscription.",
    (Resume, ACTIVE): "Subscription is already active.",
    (Resume, CANCELLED): "Cannot resume a cancelled subscription. Please contact us to reactivate.",
    (Cancel, CANCELLED): "Subscription is already cancelled.",
    (OneTimeReschedule, PAUSED): "Can only reschedule active subscriptions.",
    (OneTimeReschedule, CANCELLED): "Can only reschedule active subscriptions.",
    (AdvanceSchedule, PAUSED): "Only active subscriptions can be advanced.",
    (AdvanceSchedule, CANCELLED): "Only active subscriptions can be advanced.",
}

DEFAULT_CONFLICT_MESSAGE = "Cannot change a cancelled subscription."


# =============================================================================
# Transition Context / Result
# =============================================================================

@dataclass
class TransitionContext:
    """Clock, acting identity and billing bounds a transition runs under."""
    clock: BusinessClock
    actor: Actor
    min_lead_hours: int = MIN_BILLING_LEAD_HOURS
    max_lead_hours: int = MAX_BILLING_LEAD_HOURS
    max_billing_failures: int = 3


@dataclass
class Transition:
    """New subscription state, the events it emits and a user-facing message."""
    subscription: Subscription
    message: str
    events: List[DomainEvent] = field(default_factory=list)


def ensure_allowed(subscription: Subscription, command: Command) -> None:
    """Raise StateConflictError if the command is illegal in the current status."""
    command_type = type(command)
    if subscription.status in ALLOWED_FROM[command_type]:
        return
    message = CONFLICT_MESSAGES.get(
        (command_type, subscription.status), DEFAULT_CONFLICT_MESSAGE
    )
    raise StateConflictError(
        message,
        current_status=subscription.status.value,
        operation=command_type.__name__,
    )


def apply(subscription: Subscription, command: Command, ctx: TransitionContext) -> Transition:
    """Apply a command to a subscription without mutating it."""
    ensure_allowed(subscription, command)
    handler = _HANDLERS[type(command)]
    return handler(subscription, command, ctx)


# =============================================================================
# Helpers
# =============================================================================

def _billing_for(
    pickup: date,
    time_slot_start: str,
    lead_hours: int,
    ctx: TransitionContext,
):
    return billing_date(
        pickup,
        time_slot_start,
        lead_hours,
        ctx.clock.tz,
        ctx.min_lead_hours,
        ctx.max_lead_hours,
    )


def _regular_pointers(
    subscription: Subscription,
    ctx: TransitionContext,
    preferred_day: Optional[int] = None,
    time_slot_start: Optional[str] = None,
) -> Dict[str, Any]:
    day = subscription.preferred_day if preferred_day is None else preferred_day
    start = time_slot_start or subscription.preferred_time_slot_start
    pickup = next_pickup_from_today(day, subscription.frequency, ctx.clock.today())
    return {
        "next_pickup_date": pickup,
        "next_billing_date": _billing_for(pickup, start, subscription.billing_lead_hours, ctx),
    }


CLEARED_OVERRIDE = {
    "one_time_reschedule_date": None,
    "one_time_reschedule_time_slot": None,
    "one_time_reschedule_reason": None,
    "one_time_reschedule_by": None,
    "one_time_reschedule_at": None,
}

CLEARED_PAUSE = {
    "paused_until": None,
    "pause_reason": None,
}


def _note(ctx: TransitionContext, message: str) -> AuditEntry:
    return AuditEntry(at=ctx.clock.now_utc(), actor=ctx.actor.label, message=message)


def _with_note(
    subscription: Subscription,
    ctx: TransitionContext,
    note: str,
    changes: Dict[str, Any],
) -> Subscription:
    changes = dict(changes)
    changes["admin_notes"] = [*subscription.admin_notes, _note(ctx, note)]
    changes["updated_at"] = ctx.clock.now_utc()
    return subscription.model_copy(update=changes)


def _actor_prefix(ctx: TransitionContext) -> str:
    return {
        ActorRole.CUSTOMER: "Customer",
        ActorRole.STAFF: "Staff",
        ActorRole.SYSTEM: "System",
    }[ctx.actor.role]


def _event(event_type: EventType, subscription: Subscription, detail: Optional[str] = None):
    return DomainEvent(type=event_type, subscription_id=subscription.id, detail=detail)


# =============================================================================
# Handlers
# =============================================================================

def _pause(subscription: Subscription, command: Pause, ctx: TransitionContext) -> Transition:
    today = ctx.clock.today()
    if command.paused_until is not None and command.paused_until <= today:
        raise ValidationError("Pause end date must be in the future.")

    prefix = _actor_prefix(ctx)
    reason = (
        f"{prefix} paused: {command.reason}"
        if command.reason
        else f"{prefix} paused subscription"
    )
    updated = _with_note(subscription, ctx, reason, {
        "status": PAUSED,
        "paused_until": command.paused_until,
        "pause_reason": reason,
    })

    if command.paused_until:
        message = f"Your subscription has been paused until {command.paused_until.isoformat()}."
    else:
        message = "Your subscription has been paused. You can resume it anytime."
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_PAUSED, updated, reason)])


def _resume(subscription: Subscription, command: Resume, ctx: TransitionContext) -> Transition:
    pointers = _regular_pointers(subscription, ctx)
    prefix = _actor_prefix(ctx)
    note = (
        f"{prefix} resumed: {command.comment}"
        if command.comment
        else f"{prefix} resumed subscription"
    )
    updated = _with_note(subscription, ctx, note, {
        "status": ACTIVE,
        **pointers,
        **CLEARED_PAUSE,
        **CLEARED_OVERRIDE,
        "billing_failure_count": 0,
        "billing_failure_reason": None,
    })
    message = (
        "Your subscription has been resumed! Your next pickup is scheduled for "
        f"{pointers['next_pickup_date'].isoformat()}."
    )
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_RESUMED, updated)])


def _cancel(subscription: Subscription, command: Cancel, ctx: TransitionContext) -> Transition:
    prefix = _actor_prefix(ctx)
    reason = (
        f"{prefix} cancelled: {command.reason}"
        if command.reason
        else f"{prefix} cancelled subscription"
    )
    updated = _with_note(subscription, ctx, reason, {
        "status": CANCELLED,
        "next_pickup_date": None,
        "next_billing_date": None,
        "paused_until": None,
        "pause_reason": reason,
        "cancelled_at": ctx.clock.now_utc(),
        **CLEARED_OVERRIDE,
    })
    message = (
        "Your subscription has been cancelled. We're sorry to see you go! "
        "Feel free to reach out if you have any questions."
    )
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_CANCELLED, updated, reason)])


def _one_time_reschedule(
    subscription: Subscription,
    command: OneTimeReschedule,
    ctx: TransitionContext,
) -> Transition:
    if command.new_date < ctx.clock.today():
        raise ValidationError("The new pickup date cannot be in the past.")

    time_slot = command.time_slot if command.time_slot is not None else subscription.preferred_time_slot
    if not time_slot.strip():
        raise ValidationError("A pickup time slot is required.")

    new_billing = _billing_for(
        command.new_date,
        extract_time_slot_start(time_slot),
        subscription.billing_lead_hours,
        ctx,
    )
    if new_billing < ctx.clock.now_utc():
        days = -(-subscription.billing_lead_hours // 24)
        raise ValidationError(
            "The selected date is too soon. Please choose a pickup date at least "
            f"{days} days from now to allow for billing."
        )

    prefix = _actor_prefix(ctx)
    note = (
        f"{prefix} rescheduled: {command.reason}"
        if command.reason
        else f"{prefix} rescheduled next pickup"
    )
    updated = _with_note(subscription, ctx, note, {
        "one_time_reschedule_date": command.new_date,
        "one_time_reschedule_time_slot": time_slot,
        "one_time_reschedule_reason": command.reason,
        "one_time_reschedule_by": ctx.actor.role,
        "one_time_reschedule_at": ctx.clock.now_utc(),
        "next_pickup_date": command.new_date,
        "next_billing_date": new_billing,
    })
    message = (
        f"Your next pickup has been rescheduled to {command.new_date.isoformat()} at "
        f"{time_slot}. After this pickup, your subscription will return to its regular schedule."
    )
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_RESCHEDULED, updated, note)])


def _clear_one_time_reschedule(
    subscription: Subscription,
    command: ClearOneTimeReschedule,
    ctx: TransitionContext,
) -> Transition:
    if not subscription.has_one_time_reschedule:
        raise ValidationError("No reschedule to clear.")

    pointers = _regular_pointers(subscription, ctx)
    note = f"{_actor_prefix(ctx)} reverted one-time reschedule"
    updated = _with_note(subscription, ctx, note, {**pointers, **CLEARED_OVERRIDE})
    message = (
        "Your pickup has been reverted to the regular schedule. Next pickup: "
        f"{pointers['next_pickup_date'].isoformat()}."
    )
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_RESCHEDULED, updated, note)])


def _permanent_reschedule(
    subscription: Subscription,
    command: PermanentReschedule,
    ctx: TransitionContext,
) -> Transition:
    if not 0 <= command.preferred_day <= 6:
        raise ValidationError("Invalid pickup day selected.")

    time_slot = command.time_slot if command.time_slot is not None else subscription.preferred_time_slot
    if not time_slot.strip():
        raise ValidationError("A pickup time slot is required.")

    start = extract_time_slot_start(time_slot)
    pointers = _regular_pointers(subscription, ctx, command.preferred_day, start)
    name = day_name(command.preferred_day)
    note = f"{_actor_prefix(ctx)} changed schedule to {name}s at {time_slot}"
    if command.reason:
        note = f"{note}: {command.reason}"

    updated = _with_note(subscription, ctx, note, {
        "preferred_day": command.preferred_day,
        "preferred_time_slot": time_slot,
        "preferred_time_slot_start": start,
        "preferred_day_defaulted": False,
        "time_slot_defaulted": subscription.time_slot_defaulted and command.time_slot is None,
        **pointers,
        **CLEARED_OVERRIDE,
    })
    message = (
        f"Your subscription has been updated! You'll now pick up on {name}s at "
        f"{time_slot}. Next pickup: {pointers['next_pickup_date'].isoformat()}."
    )
    return Transition(updated, message, [_event(EventType.SUBSCRIPTION_RESCHEDULED, updated, note)])


def _advance(subscription: Subscription, command: AdvanceSchedule, ctx: TransitionContext) -> Transition:
    if subscription.next_pickup_date is None:
        raise ValidationError("Subscription has no scheduled pickup to advance from.")

    floor = ctx.clock.today()
    if command.after is not None and command.after > floor:
        floor = command.after
    next_pickup = next_pickup_after(
        subscription.next_pickup_date, subscription.preferred_day, subscription.frequency
    )
    # Catch up on missed sweeps so the new pointer is always in the future
    while next_pickup <= floor:
        next_pickup = next_pickup_after(
            next_pickup, subscription.preferred_day, subscription.frequency
        )

    next_billing = _billing_for(
        next_pickup,
        subscription.preferred_time_slot_start,
        subscription.billing_lead_hours,
        ctx,
    )
    if command.after is not None:
        note = f"Pickup booked for {command.after.isoformat()}; next pickup {next_pickup.isoformat()}"
    else:
        note = f"Pickup on {subscription.next_pickup_date.isoformat()} scheduled; next pickup {next_pickup.isoformat()}"
    updated = _with_note(subscription, ctx, note, {
        "next_pickup_date": next_pickup,
        "next_billing_date": next_billing,
        **CLEARED_OVERRIDE,
    })
    return Transition(
        updated,
        f"Next pickup: {next_pickup.isoformat()}.",
        [_event(EventType.SUBSCRIPTION_ADVANCED, updated)],
    )


def _record_billing_failure(
    subscription: Subscription,
    command: RecordBillingFailure,
    ctx: TransitionContext,
) -> Transition:
    count = subscription.billing_failure_count + 1
    code = command.error_code or "UNKNOWN"
    reason = command.error_message or code
    changes: Dict[str, Any] = {
        "billing_failure_count": count,
        "billing_failure_reason": reason,
        "last_billing_status": "FAILED",
        "last_billing_attempt_at": ctx.clock.now_utc(),
    }

    note = f"Billing failed ({count}): {reason}"
    if count >= ctx.max_billing_failures and subscription.status == ACTIVE:
        pause_reason = f"Billing failed {count} times: {code}"
        changes.update({
            "status": PAUSED,
            "paused_until": None,
            "pause_reason": pause_reason,
        })
        note = f"{note}. Paused: {pause_reason}"
        message = "Subscription paused after repeated billing failures."
    else:
        message = "Billing failure recorded."

    updated = _with_note(subscription, ctx, note, changes)
    events = [_event(EventType.BILLING_FAILED, updated, reason)]
    if updated.status != subscription.status:
        events.append(_event(EventType.SUBSCRIPTION_PAUSED, updated, changes["pause_reason"]))
    return Transition(updated, message, events)


def _record_billing_success(
    subscription: Subscription,
    command: RecordBillingSuccess,
    ctx: TransitionContext,
) -> Transition:
    cycle = subscription.billing_cycle_count + 1
    updated = _with_note(subscription, ctx, f"Billing succeeded (cycle {cycle})", {
        "billing_failure_count": 0,
        "billing_failure_reason": None,
        "billing_cycle_count": cycle,
        "last_billing_status": "SUCCESS",
        "last_billing_attempt_at": ctx.clock.now_utc(),
    })
    return Transition(
        updated,
        "Billing success recorded.",
        [_event(EventType.BILLING_SUCCEEDED, updated)],
    )


def _update_billing_lead_hours(
    subscription: Subscription,
    command: UpdateBillingLeadHours,
    ctx: TransitionContext,
) -> Transition:
    hours = validate_billing_lead_hours(command.hours, ctx.min_lead_hours, ctx.max_lead_hours)
    changes: Dict[str, Any] = {"billing_lead_hours": hours}
    if subscription.next_pickup_date is not None:
        start = extract_time_slot_start(subscription.current_time_slot)
        changes["next_billing_date"] = _billing_for(subscription.next_pickup_date, start, hours, ctx)

    updated = _with_note(
        subscription, ctx, f"Billing lead time changed to {hours} hours", changes
    )
    return Transition(updated, f"Billing lead time set to {hours} hours.")


_HANDLERS = {
    Pause: _pause,
    Resume: _resume,
    Cancel: _cancel,
    OneTimeReschedule: _one_time_reschedule,
    ClearOneTimeReschedule: _clear_one_time_reschedule,
    PermanentReschedule: _permanent_reschedule,
    AdvanceSchedule: _advance,
    RecordBillingFailure: _record_billing_failure,
    RecordBillingSuccess: _record_billing_success,
    UpdateBillingLeadHours: _update_billing_lead_hours,
}


def format_audit_log(subscription: Subscription) -> str:
    """Render admin notes as newline-separated "timestamp: message" lines."""
    return "\n".join(entry.render() for entry in subscription.admin_notes)
