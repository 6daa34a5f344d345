"""
Unit tests for pickup and billing date arithmetic.

Reference dates: 2026-01-13 is a Tuesday, 2026-01-14 a Wednesday.
US daylight saving starts on 2026-03-08.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.scheduling import (
    billing_date,
    extract_time_slot_start,
    next_pickup_after,
    next_pickup_from_today,
    validate_billing_lead_hours,
)
from subscribe_save.domain.subscription import Frequency


LA = ZoneInfo("America/Los_Angeles")
TUESDAY = date(2026, 1, 13)
WEDNESDAY = date(2026, 1, 14)


class TestNextPickupFromToday:
    """First pickup after a (re)start."""

    @pytest.mark.parametrize("preferred_day,frequency,expected", [
        (3, Frequency.WEEKLY, date(2026, 1, 14)),
        (2, Frequency.WEEKLY, date(2026, 1, 20)),
        (1, Frequency.WEEKLY, date(2026, 1, 19)),
        (3, Frequency.BIWEEKLY, date(2026, 1, 21)),
        (2, Frequency.BIWEEKLY, date(2026, 1, 20)),
        (3, Frequency.TRIWEEKLY, date(2026, 1, 28)),
        (2, Frequency.TRIWEEKLY, date(2026, 1, 27)),
    ])
    def test_known_dates(self, preferred_day, frequency, expected):
        assert next_pickup_from_today(preferred_day, frequency, TUESDAY) == expected

    def test_never_returns_today(self):
        for frequency in Frequency:
            result = next_pickup_from_today(2, frequency, TUESDAY)
            assert result > TUESDAY

    @pytest.mark.parametrize("frequency", list(Frequency))
    def test_lands_on_preferred_day_with_minimum_spacing(self, frequency):
        for offset in range(7):
            today = TUESDAY + timedelta(days=offset)
            for preferred_day in range(7):
                result = next_pickup_from_today(preferred_day, frequency, today)
                gap = (result - today).days

                assert BusinessClock.day_of_week(result) == preferred_day
                assert gap >= frequency.min_days_ahead
                assert gap < frequency.min_days_ahead + 7


class TestNextPickupAfter:
    """Regular cadence after a materialized pickup."""

    @pytest.mark.parametrize("frequency,expected", [
        (Frequency.WEEKLY, date(2026, 1, 21)),
        (Frequency.BIWEEKLY, date(2026, 1, 28)),
        (Frequency.TRIWEEKLY, date(2026, 2, 4)),
    ])
    def test_adds_interval(self, frequency, expected):
        assert next_pickup_after(WEDNESDAY, 3, frequency) == expected

    def test_snaps_forward_to_preferred_day(self):
        # Wednesday + 7 = Wednesday 21st, then forward to Friday
        assert next_pickup_after(WEDNESDAY, 5, Frequency.WEEKLY) == date(2026, 1, 23)

    def test_override_date_returns_to_regular_day(self):
        # Pickup moved to a Thursday; the following one is back on Wednesday
        thursday = date(2026, 1, 15)
        assert next_pickup_after(thursday, 3, Frequency.WEEKLY) == date(2026, 1, 28)

    @pytest.mark.parametrize("frequency", list(Frequency))
    def test_respects_interval_for_every_start_day(self, frequency):
        for offset in range(7):
            previous = WEDNESDAY + timedelta(days=offset)
            for preferred_day in range(7):
                result = next_pickup_after(previous, preferred_day, frequency)
                gap = (result - previous).days

                assert BusinessClock.day_of_week(result) == preferred_day
                assert frequency.interval_days <= gap < frequency.interval_days + 7


class TestBillingDate:
    """Billing instant = slot start minus lead hours."""

    def test_default_lead_time(self):
        # 12:00 PST on the 14th is 20:00 UTC; 85 hours earlier
        result = billing_date(WEDNESDAY, "12:00", 85, LA)
        assert result == datetime(2026, 1, 11, 7, 0, tzinfo=timezone.utc)

    def test_result_is_utc(self):
        result = billing_date(WEDNESDAY, "09:30", 24, LA)
        assert result.tzinfo == timezone.utc
        assert result == datetime(2026, 1, 13, 17, 30, tzinfo=timezone.utc)

    def test_lead_is_elapsed_hours_across_dst(self):
        # Monday 2026-03-09 12:00 PDT = 19:00 UTC, two days after the switch
        result = billing_date(date(2026, 3, 9), "12:00", 48, LA)
        assert result == datetime(2026, 3, 7, 19, 0, tzinfo=timezone.utc)

    def test_lead_hours_are_clamped(self):
        too_long = billing_date(WEDNESDAY, "12:00", 500, LA)
        too_short = billing_date(WEDNESDAY, "12:00", 0, LA)

        slot = datetime(2026, 1, 14, 20, 0, tzinfo=timezone.utc)
        assert slot - too_long == timedelta(hours=168)
        assert slot - too_short == timedelta(hours=1)

    def test_custom_bounds(self):
        result = billing_date(WEDNESDAY, "12:00", 100, LA, minimum=1, maximum=72)
        assert datetime(2026, 1, 14, 20, 0, tzinfo=timezone.utc) - result == timedelta(hours=72)


class TestValidateBillingLeadHours:

    @pytest.mark.parametrize("hours,expected", [
        (None, 1),
        (-5, 1),
        (0, 1),
        (1, 1),
        (85, 85),
        (168, 168),
        (169, 168),
    ])
    def test_clamps(self, hours, expected):
        assert validate_billing_lead_hours(hours) == expected


class TestExtractTimeSlotStart:

    @pytest.mark.parametrize("label,expected", [
        ("12:00 PM - 2:00 PM", "12:00"),
        ("9am", "09:00"),
        ("9:30 AM-11:00 AM", "09:30"),
        ("3 p.m. - 5 p.m.", "15:00"),
        ("12:15 AM", "00:15"),
        ("14:30-16:00", "14:30"),
        ("7:05", "07:05"),
    ])
    def test_parses_labels(self, label, expected):
        assert extract_time_slot_start(label) == expected

    @pytest.mark.parametrize("label", [None, "", "noon", "13 PM", "25:00", "anytime"])
    def test_falls_back_to_noon(self, label):
        assert extract_time_slot_start(label) == "12:00"
