"""
Pickup & Billing Date Arithmetic

Pure functions deriving the next pickup date from a day-of-week preference
and a frequency, and the billing instant from a pickup date, a time slot
start and a lead time in hours.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.subscription import Frequency


MIN_BILLING_LEAD_HOURS = 1
MAX_BILLING_LEAD_HOURS = 168
DEFAULT_TIME_SLOT_START = "12:00"

_TWELVE_HOUR = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*([AaPp])\.?\s*[Mm]\.?")
_TWENTY_FOUR_HOUR = re.compile(r"^\s*(\d{1,2}):(\d{2})(?!\s*[AaPp])")


def next_pickup_from_today(
    preferred_day: int,
    frequency: Frequency,
    today: date,
) -> date:
    """
    First pickup on or after a (re)start.

    Never returns today; BIWEEKLY and TRIWEEKLY are pushed out in whole
    weeks until they respect the cadence's minimum spacing (7 and 14 days).
    """
    days_until = preferred_day - BusinessClock.day_of_week(today)
    if days_until <= 0:
        days_until += 7

    while days_until < frequency.min_days_ahead:
        days_until += 7

    return BusinessClock.add_days(today, days_until)


def next_pickup_after(
    previous_pickup: date,
    preferred_day: int,
    frequency: Frequency,
) -> date:
    """Add one cadence interval, then snap forward to the preferred day."""
    candidate = BusinessClock.add_days(previous_pickup, frequency.interval_days)
    diff = preferred_day - BusinessClock.day_of_week(candidate)
    if diff < 0:
        diff += 7
    return BusinessClock.add_days(candidate, diff)


def validate_billing_lead_hours(
    hours: Optional[int],
    minimum: int = MIN_BILLING_LEAD_HOURS,
    maximum: int = MAX_BILLING_LEAD_HOURS,
) -> int:
    """Clamp lead hours into [minimum, maximum]; None becomes the minimum."""
    if hours is None:
        return minimum
    return max(minimum, min(maximum, int(hours)))


def billing_date(
    pickup_date: date,
    time_slot_start: str,
    billing_lead_hours: int,
    tz: ZoneInfo,
    minimum: int = MIN_BILLING_LEAD_HOURS,
    maximum: int = MAX_BILLING_LEAD_HOURS,
) -> datetime:
    """
    Instant at which the pickup is billed, in UTC.

    The subtraction happens on the UTC timeline so the lead time is exact
    elapsed hours even across a daylight-saving change.
    """
    lead = validate_billing_lead_hours(billing_lead_hours, minimum, maximum)
    start = pickup_instant(pickup_date, time_slot_start, tz)
    return start.astimezone(timezone.utc) - timedelta(hours=lead)


def pickup_instant(pickup_date: date, time_slot_start: str, tz: ZoneInfo) -> datetime:
    hours, minutes = (int(part) for part in time_slot_start.split(":", 1))
    return datetime(
        pickup_date.year, pickup_date.month, pickup_date.day, hours, minutes, tzinfo=tz
    )


def extract_time_slot_start(label: Optional[str]) -> str:
    """
    Parse the start of a slot label into 24-hour "HH:MM".

    "12:00 PM - 2:00 PM" -> "12:00", "9am" -> "09:00", "14:30-16:00" -> "14:30".
    Anything unparseable falls back to noon.
    """
    if not label:
        return DEFAULT_TIME_SLOT_START

    match = _TWELVE_HOUR.match(label)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            return DEFAULT_TIME_SLOT_START
        period = match.group(3).upper()
        if period == "P" and hour != 12:
            hour += 12
        elif period == "A" and hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"

    match = _TWENTY_FOUR_HOUR.match(label)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2))
        if hour > 23 or minute > 59:
            return DEFAULT_TIME_SLOT_START
        return f"{hour:02d}:{minute:02d}"

    return DEFAULT_TIME_SLOT_START
