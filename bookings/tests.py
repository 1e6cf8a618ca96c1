"""
Tests for the booking system.

Tests cover:
- Recurrence engine (next occurrence, occurrence sequences, date helpers)
- Slot conflict detection
- Staff, Booking and RecurringBooking models and managers
- Service layer (series materialization, status transitions, rescheduling, reminders)
- API endpoints (recurring bookings, bookings, availability)
- Management commands
"""

from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from io import StringIO
from zoneinfo import ZoneInfo

from django.core import mail
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .conflicts import find_conflicts, is_available
from .models import Booking, RecurringBooking, Staff
from .recurrence import (
    add_months,
    calculate_next_occurrence,
    days_in_month,
    generate_occurrence_dates,
    js_weekday,
    upcoming_occurrences,
)
from .services import SlotUnavailableError
from .types import RecurringBookingData, RecurringBookingUpdateData


LOS_ANGELES = ZoneInfo("America/Los_Angeles")


def utc(*args):
    """Aware UTC datetime shortcut."""
    return datetime(*args, tzinfo=dt_timezone.utc)


def weekly_pattern(**overrides):
    """Unsaved weekly pattern: Tuesdays 14:00 UTC from 2025-11-04."""
    fields = dict(
        frequency='weekly',
        interval=1,
        day_of_week=2,
        start_date=utc(2025, 11, 4, 14, 0),
        duration_minutes=60,
    )
    fields.update(overrides)
    return RecurringBooking(**fields)


def monthly_pattern(**overrides):
    """Unsaved monthly pattern on the 31st from 2025-01-31 10:00 UTC."""
    fields = dict(
        frequency='monthly',
        interval=1,
        day_of_month=31,
        start_date=utc(2025, 1, 31, 10, 0),
        duration_minutes=60,
    )
    fields.update(overrides)
    return RecurringBooking(**fields)


def booking(pk, start, end, booking_status='confirmed', staff_id=1):
    """Unsaved booking for conflict checks."""
    return Booking(
        pk=pk,
        staff_id=staff_id,
        start_datetime=start,
        end_datetime=end,
        status=booking_status,
    )


class DateHelperTests(SimpleTestCase):
    """Test shared date helpers."""

    def test_days_in_month(self):
        """Test month lengths including leap years."""
        self.assertEqual(days_in_month(2025, 2), 28)
        self.assertEqual(days_in_month(2024, 2), 29)
        self.assertEqual(days_in_month(2025, 4), 30)
        self.assertEqual(days_in_month(2025, 12), 31)

    def test_add_months_clamps_to_month_end(self):
        """Test that a missing day lands on the last day of the month."""
        self.assertEqual(add_months(utc(2025, 1, 31, 10), 1, 31), utc(2025, 2, 28, 10))
        self.assertEqual(add_months(utc(2024, 1, 31, 10), 1, 31), utc(2024, 2, 29, 10))

    def test_add_months_crosses_year(self):
        """Test month arithmetic across a year boundary."""
        self.assertEqual(add_months(utc(2025, 11, 30, 9), 3, 30), utc(2026, 2, 28, 9))
        self.assertEqual(add_months(utc(2025, 12, 15, 9), 1, 15), utc(2026, 1, 15, 9))

    def test_js_weekday(self):
        """Test Sunday-based weekday numbering."""
        self.assertEqual(js_weekday(date(2025, 11, 9)), 0)  # Sunday
        self.assertEqual(js_weekday(date(2025, 11, 4)), 2)  # Tuesday
        self.assertEqual(js_weekday(date(2025, 11, 8)), 6)  # Saturday


class CalculateNextOccurrenceTests(SimpleTestCase):
    """Test the next-occurrence resolver."""

    def test_weekly_next_occurrence(self):
        """Test the next Tuesday after a Wednesday."""
        pattern = weekly_pattern()
        result = calculate_next_occurrence(pattern, date(2025, 11, 5))
        self.assertEqual(result, utc(2025, 11, 11, 14, 0))

    def test_from_date_before_start_returns_start(self):
        """Test that searches before the anchor return the anchor."""
        pattern = weekly_pattern()
        result = calculate_next_occurrence(pattern, utc(2025, 10, 1))
        self.assertEqual(result, pattern.start_date)

    def test_from_date_is_inclusive(self):
        """Test that an occurrence exactly at from_date is returned."""
        pattern = weekly_pattern()
        result = calculate_next_occurrence(pattern, utc(2025, 11, 18, 14, 0))
        self.assertEqual(result, utc(2025, 11, 18, 14, 0))

    def test_time_of_day_is_preserved(self):
        """Test that a search just after an occurrence skips to the next one."""
        pattern = weekly_pattern()
        result = calculate_next_occurrence(pattern, utc(2025, 11, 18, 14, 1))
        self.assertEqual(result, utc(2025, 11, 25, 14, 0))

    def test_weekly_interval(self):
        """Test every-other-week cadence via interval."""
        pattern = weekly_pattern(interval=2)
        result = calculate_next_occurrence(pattern, date(2025, 11, 5))
        self.assertEqual(result, utc(2025, 11, 18, 14, 0))

    def test_biweekly_ignores_interval(self):
        """Test that biweekly is always a 14 day step."""
        pattern = weekly_pattern(frequency='biweekly', interval=3)
        result = calculate_next_occurrence(pattern, date(2025, 11, 5))
        self.assertEqual(result, utc(2025, 11, 18, 14, 0))

    def test_monthly_clamps_short_month(self):
        """Test day 31 in February."""
        pattern = monthly_pattern()
        result = calculate_next_occurrence(pattern, date(2025, 2, 1))
        self.assertEqual(result, utc(2025, 2, 28, 10, 0))

    def test_monthly_clamps_leap_february(self):
        """Test day 31 in a leap-year February."""
        pattern = monthly_pattern(start_date=utc(2024, 1, 31, 10, 0))
        result = calculate_next_occurrence(pattern, date(2024, 2, 1))
        self.assertEqual(result, utc(2024, 2, 29, 10, 0))

    def test_monthly_returns_to_full_day_after_short_month(self):
        """Test that clamping does not drift the day."""
        pattern = monthly_pattern()
        result = calculate_next_occurrence(pattern, date(2025, 3, 1))
        self.assertEqual(result, utc(2025, 3, 31, 10, 0))

    def test_monthly_interval(self):
        """Test quarterly cadence."""
        pattern = monthly_pattern(
            interval=3,
            day_of_month=15,
            start_date=utc(2025, 1, 15, 9, 0)
        )
        result = calculate_next_occurrence(pattern, date(2025, 2, 1))
        self.assertEqual(result, utc(2025, 4, 15, 9, 0))

    def test_end_date_terminates_series(self):
        """Test that a candidate after end_date ends the series."""
        pattern = weekly_pattern(end_date=utc(2025, 11, 20))
        self.assertEqual(
            calculate_next_occurrence(pattern, date(2025, 11, 12)),
            utc(2025, 11, 18, 14, 0)
        )
        self.assertIsNone(calculate_next_occurrence(pattern, date(2025, 11, 19)))

    def test_occurrence_on_end_date_is_allowed(self):
        """Test that end_date itself is not excluded."""
        pattern = weekly_pattern(end_date=utc(2025, 11, 18, 14, 0))
        self.assertEqual(
            calculate_next_occurrence(pattern, date(2025, 11, 12)),
            utc(2025, 11, 18, 14, 0)
        )

    def test_occurrence_cap_terminates_series(self):
        """Test that a fully materialized series has no next occurrence."""
        pattern = weekly_pattern(occurrences=5, generated_booking_ids=[1, 2, 3, 4, 5])
        self.assertIsNone(calculate_next_occurrence(pattern, date(2030, 1, 1)))
        self.assertIsNone(calculate_next_occurrence(pattern, date(2025, 1, 1)))

    def test_occurrence_cap_not_reached(self):
        """Test that a partially materialized series continues."""
        pattern = weekly_pattern(occurrences=5, generated_booking_ids=[1, 2])
        self.assertIsNotNone(calculate_next_occurrence(pattern, date(2025, 11, 5)))

    def test_weekly_results_fall_on_day_of_week(self):
        """Test weekday and lower bound over many search dates."""
        for interval in (1, 2, 3):
            pattern = weekly_pattern(interval=interval)
            for offset in range(120):
                from_dt = utc(2025, 10, 1) + timedelta(hours=13 * offset)
                result = calculate_next_occurrence(pattern, from_dt)
                self.assertEqual(js_weekday(result), 2)
                self.assertGreaterEqual(result, from_dt)

    def test_monthly_results_clamp_day(self):
        """Test day-of-month over many search dates."""
        for day_of_month in (28, 29, 30, 31):
            pattern = monthly_pattern(
                day_of_month=day_of_month,
                start_date=utc(2024, 1, day_of_month, 10, 0)
            )
            for offset in range(40):
                from_dt = utc(2024, 1, 1) + timedelta(days=17 * offset)
                result = calculate_next_occurrence(pattern, from_dt)
                expected_day = min(day_of_month, days_in_month(result.year, result.month))
                self.assertEqual(result.day, expected_day)
                self.assertGreaterEqual(result, from_dt)

    def test_missing_day_of_week_is_invalid(self):
        """Test weekly without day_of_week."""
        with self.assertRaises(ValidationError):
            calculate_next_occurrence(weekly_pattern(day_of_week=None), date(2025, 11, 5))

    def test_missing_day_of_month_is_invalid(self):
        """Test monthly without day_of_month."""
        with self.assertRaises(ValidationError):
            calculate_next_occurrence(monthly_pattern(day_of_month=None), date(2025, 2, 1))

    def test_non_positive_interval_is_invalid(self):
        """Test zero and negative intervals."""
        for interval in (0, -1):
            with self.assertRaises(ValidationError):
                calculate_next_occurrence(weekly_pattern(interval=interval), date(2025, 11, 5))

    def test_unknown_frequency_is_invalid(self):
        """Test an unsupported frequency."""
        with self.assertRaises(ValidationError) as ctx:
            calculate_next_occurrence(weekly_pattern(frequency='daily'), date(2025, 11, 5))
        self.assertIn('frequency', ctx.exception.message_dict)


class GenerateOccurrenceDatesTests(SimpleTestCase):
    """Test occurrence sequence generation."""

    def test_weekly_sequence(self):
        """Test that the sequence starts at start_date, 7 days apart."""
        pattern = weekly_pattern()
        dates = generate_occurrence_dates(pattern, 5)

        self.assertEqual(len(dates), 5)
        self.assertEqual(dates[0], pattern.start_date)
        for earlier, later in zip(dates, dates[1:]):
            self.assertEqual(later - earlier, timedelta(days=7))

    def test_biweekly_sequence(self):
        """Test 14 day spacing."""
        dates = generate_occurrence_dates(weekly_pattern(frequency='biweekly'), 6)

        self.assertEqual(len(dates), 6)
        for earlier, later in zip(dates, dates[1:]):
            self.assertEqual(later - earlier, timedelta(days=14))

    def test_monthly_sequence(self):
        """Test month-end clamping across a sequence."""
        dates = generate_occurrence_dates(monthly_pattern(), 4)
        self.assertEqual(dates, [
            utc(2025, 1, 31, 10, 0),
            utc(2025, 2, 28, 10, 0),
            utc(2025, 3, 31, 10, 0),
            utc(2025, 4, 30, 10, 0),
        ])

    def test_capped_by_occurrences(self):
        """Test that occurrences limits the sequence length."""
        dates = generate_occurrence_dates(weekly_pattern(occurrences=3), 10)
        self.assertEqual(len(dates), 3)

    def test_capped_by_end_date(self):
        """Test that no date falls after end_date."""
        end_date = utc(2025, 12, 2, 14, 0)
        dates = generate_occurrence_dates(weekly_pattern(end_date=end_date), 52)

        self.assertEqual(len(dates), 5)
        self.assertEqual(dates[-1], end_date)
        self.assertTrue(all(d <= end_date for d in dates))

    def test_both_limits_stop_at_first_reached(self):
        """Test end_date and occurrences together."""
        end_date = utc(2025, 12, 2, 14, 0)
        self.assertEqual(
            len(generate_occurrence_dates(weekly_pattern(end_date=end_date, occurrences=3), 52)),
            3
        )
        self.assertEqual(
            len(generate_occurrence_dates(weekly_pattern(end_date=end_date, occurrences=30), 52)),
            5
        )

    def test_zero_max_returns_empty(self):
        """Test a zero cap."""
        self.assertEqual(generate_occurrence_dates(weekly_pattern(), 0), [])

    def test_exhausted_series_yields_only_seed(self):
        """Test that the seed is not re-validated against the occurrence cap."""
        pattern = weekly_pattern(occurrences=2, generated_booking_ids=[10, 11])
        self.assertEqual(generate_occurrence_dates(pattern, 10), [pattern.start_date])

    def test_generation_is_idempotent(self):
        """Test that repeated calls return the same sequence."""
        pattern = monthly_pattern(interval=2)
        self.assertEqual(
            generate_occurrence_dates(pattern, 12),
            generate_occurrence_dates(pattern, 12)
        )

    def test_never_exceeds_max(self):
        """Test the cap for several sizes."""
        pattern = weekly_pattern()
        for max_to_generate in (1, 2, 7, 52):
            self.assertEqual(len(generate_occurrence_dates(pattern, max_to_generate)), max_to_generate)

    def test_invalid_pattern_raises_before_generation(self):
        """Test validation happens even with a zero cap."""
        with self.assertRaises(ValidationError):
            generate_occurrence_dates(weekly_pattern(day_of_week=None), 0)

    def test_weekly_evening_series_keeps_local_weekday(self):
        """Test Tuesday 20:00 in Los Angeles (Wednesday in UTC) across DST."""
        pattern = weekly_pattern(
            start_date=datetime(2030, 1, 1, 20, 0, tzinfo=LOS_ANGELES),
            time_zone='America/Los_Angeles'
        )
        dates = generate_occurrence_dates(pattern, 12)

        self.assertEqual(len(dates), 12)
        for occurrence in dates:
            local = occurrence.astimezone(LOS_ANGELES)
            self.assertEqual(js_weekday(local), 2)
            self.assertEqual(local.hour, 20)
        # 2030-03-10 switches to daylight time
        self.assertEqual(dates[-1].astimezone(dt_timezone.utc), utc(2030, 3, 20, 3, 0))

    def test_monthly_evening_series_keeps_local_day(self):
        """Test month-end clamping on the Los Angeles calendar."""
        pattern = monthly_pattern(
            start_date=datetime(2030, 1, 31, 20, 0, tzinfo=LOS_ANGELES),
            time_zone='America/Los_Angeles'
        )
        local_dates = [d.astimezone(LOS_ANGELES) for d in generate_occurrence_dates(pattern, 4)]

        self.assertEqual(
            [(d.month, d.day, d.hour) for d in local_dates],
            [(1, 31, 20), (2, 28, 20), (3, 31, 20), (4, 30, 20)]
        )

    def test_next_occurrence_searches_from_local_day(self):
        """Test that from_date is compared on the series' wall clock."""
        pattern = monthly_pattern(
            day_of_month=15,
            start_date=datetime(2030, 1, 15, 20, 0, tzinfo=LOS_ANGELES),
            time_zone='America/Los_Angeles'
        )
        # 2030-02-16 03:00 UTC is still 2030-02-15 19:00 in Los Angeles
        result = calculate_next_occurrence(pattern, utc(2030, 2, 16, 3, 0))
        self.assertEqual(result, datetime(2030, 2, 15, 20, 0, tzinfo=LOS_ANGELES))

    def test_unknown_time_zone_is_invalid(self):
        """Test that an unknown zone is reported as a validation error."""
        with self.assertRaises(ValidationError) as ctx:
            generate_occurrence_dates(weekly_pattern(time_zone='Mars/Olympus_Mons'), 3)
        self.assertIn('time_zone', ctx.exception.message_dict)


class UpcomingOccurrencesTests(SimpleTestCase):
    """Test upcoming occurrence previews."""

    def test_upcoming_from_mid_series(self):
        """Test that previews start at the next occurrence."""
        dates = upcoming_occurrences(weekly_pattern(), utc(2025, 11, 12), count=3)
        self.assertEqual(dates, [
            utc(2025, 11, 18, 14, 0),
            utc(2025, 11, 25, 14, 0),
            utc(2025, 12, 2, 14, 0),
        ])

    def test_count_is_clamped(self):
        """Test the preview size limit."""
        self.assertEqual(len(upcoming_occurrences(weekly_pattern(), utc(2025, 1, 1), count=500)), 50)
        self.assertEqual(len(upcoming_occurrences(weekly_pattern(), utc(2025, 1, 1), count=0)), 1)

    def test_upcoming_respects_occurrence_count(self):
        """Test that previews stop at the last counted occurrence."""
        pattern = weekly_pattern(occurrences=3)
        dates = upcoming_occurrences(pattern, utc(2025, 11, 12), count=5)
        self.assertEqual(dates, [utc(2025, 11, 18, 14, 0)])


class ConflictDetectionTests(SimpleTestCase):
    """Test slot conflict detection."""

    def setUp(self):
        """Existing booking 10:00-11:00 on staff 1."""
        self.existing = [booking(1, utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0))]

    def check(self, start, end, **kwargs):
        return is_available(1, start, end, self.existing, **kwargs)

    def test_partial_overlap_conflicts(self):
        """Test a proposal overlapping the end of a booking."""
        self.assertFalse(self.check(utc(2025, 11, 4, 10, 30), utc(2025, 11, 4, 11, 30)))

    def test_overlap_at_start_conflicts(self):
        """Test a proposal overlapping the start of a booking."""
        self.assertFalse(self.check(utc(2025, 11, 4, 9, 30), utc(2025, 11, 4, 10, 30)))

    def test_touching_end_is_available(self):
        """Test back-to-back after an existing booking."""
        self.assertTrue(self.check(utc(2025, 11, 4, 11, 0), utc(2025, 11, 4, 12, 0)))

    def test_touching_start_is_available(self):
        """Test back-to-back before an existing booking."""
        self.assertTrue(self.check(utc(2025, 11, 4, 9, 0), utc(2025, 11, 4, 10, 0)))

    def test_identical_interval_conflicts(self):
        """Test exact duplication."""
        self.assertFalse(self.check(utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0)))

    def test_contained_booking_conflicts(self):
        """Test a proposal that surrounds an existing booking."""
        self.existing = [booking(1, utc(2025, 11, 4, 10, 15), utc(2025, 11, 4, 10, 45))]
        self.assertFalse(self.check(utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0)))

    def test_proposal_inside_booking_conflicts(self):
        """Test a proposal inside an existing booking."""
        self.assertFalse(self.check(utc(2025, 11, 4, 10, 15), utc(2025, 11, 4, 10, 45)))

    def test_cancelled_and_no_show_do_not_block(self):
        """Test that freed slots are available."""
        for freed_status in ('cancelled', 'no-show'):
            self.existing = [booking(1, utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0), freed_status)]
            self.assertTrue(self.check(utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0)))

    def test_other_statuses_block(self):
        """Test that every other status blocks."""
        for blocking_status in ('pending', 'confirmed', 'completed', 'rescheduled'):
            self.existing = [booking(1, utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0), blocking_status)]
            self.assertFalse(self.check(utc(2025, 11, 4, 10, 30), utc(2025, 11, 4, 11, 30)))

    def test_excluded_booking_is_ignored(self):
        """Test rescheduling over the booking's own slot."""
        self.assertTrue(self.check(
            utc(2025, 11, 4, 10, 30),
            utc(2025, 11, 4, 11, 30),
            exclude_booking_id=1
        ))

    def test_exclusion_only_skips_matching_booking(self):
        """Test that other bookings still block when one is excluded."""
        self.existing.append(booking(2, utc(2025, 11, 4, 11, 0), utc(2025, 11, 4, 12, 0)))
        self.assertFalse(self.check(
            utc(2025, 11, 4, 10, 30),
            utc(2025, 11, 4, 11, 30),
            exclude_booking_id=1
        ))

    def test_other_staff_does_not_block(self):
        """Test bookings on another resource."""
        self.existing = [booking(1, utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0), staff_id=2)]
        self.assertTrue(self.check(utc(2025, 11, 4, 10, 0), utc(2025, 11, 4, 11, 0)))

    def test_empty_calendar_is_available(self):
        """Test a staff member with no bookings."""
        self.assertTrue(is_available(1, utc(2025, 11, 4, 10), utc(2025, 11, 4, 11), []))

    def test_find_conflicts_returns_blocking_bookings(self):
        """Test that all blocking bookings are reported."""
        second = booking(2, utc(2025, 11, 4, 11, 0), utc(2025, 11, 4, 12, 0))
        self.existing.append(second)
        conflicts = find_conflicts(1, utc(2025, 11, 4, 10, 30), utc(2025, 11, 4, 11, 30), self.existing)
        self.assertEqual([b.pk for b in conflicts], [1, 2])

    def test_invalid_interval_raises(self):
        """Test an interval that ends before it starts."""
        with self.assertRaises(ValidationError):
            self.check(utc(2025, 11, 4, 11, 0), utc(2025, 11, 4, 10, 0))


class ModelTests(TestCase):
    """Test Staff, RecurringBooking and Booking models."""

    def setUp(self):
        self.staff = Staff.objects.create(name="Dana Coach", email="dana@example.com")

    def test_start_time_derived_from_local_start(self):
        """Test wall-clock start time in the series' zone."""
        pattern = RecurringBooking.objects.create(
            staff=self.staff,
            frequency='weekly',
            day_of_week=2,
            start_date=utc(2025, 11, 4, 14, 0),
            time_zone='America/New_York'
        )
        self.assertEqual(pattern.start_time, time(9, 0))
        self.assertEqual(pattern.generated_booking_ids, [])

    def test_start_date_must_match_day_of_week(self):
        """Test weekday consistency."""
        with self.assertRaises(ValidationError) as ctx:
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='weekly',
                day_of_week=3,
                start_date=utc(2025, 11, 4, 14, 0)
            )
        self.assertIn('start_date', ctx.exception.message_dict)

    def test_start_date_must_match_day_of_month(self):
        """Test that a monthly series starts on its day of month."""
        with self.assertRaises(ValidationError) as ctx:
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='monthly',
                day_of_month=20,
                start_date=utc(2030, 1, 5, 10, 0)
            )
        self.assertIn('start_date', ctx.exception.message_dict)

    def test_day_of_month_checked_on_local_calendar(self):
        """Test that 2030-01-16 04:00 UTC is the 15th in Los Angeles."""
        pattern = RecurringBooking.objects.create(
            staff=self.staff,
            frequency='monthly',
            day_of_month=15,
            start_date=utc(2030, 1, 16, 4, 0),
            time_zone='America/Los_Angeles'
        )
        self.assertEqual(pattern.start_time, time(20, 0))

    def test_clamped_day_of_month_start_is_valid(self):
        """Test a day-31 series starting on the last day of a short month."""
        pattern = RecurringBooking.objects.create(
            staff=self.staff,
            frequency='monthly',
            day_of_month=31,
            start_date=utc(2030, 4, 30, 10, 0)
        )
        self.assertEqual(pattern.day_of_month, 31)

    def test_weekly_rejects_day_of_month(self):
        """Test that weekly patterns cannot carry a day of month."""
        with self.assertRaises(ValidationError) as ctx:
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='weekly',
                day_of_week=2,
                day_of_month=4,
                start_date=utc(2025, 11, 4, 14, 0)
            )
        self.assertIn('day_of_month', ctx.exception.message_dict)

    def test_monthly_requires_day_of_month(self):
        """Test monthly without a day of month."""
        with self.assertRaises(ValidationError):
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='monthly',
                start_date=utc(2025, 1, 31, 10, 0)
            )

    def test_end_date_before_start_is_invalid(self):
        """Test series boundaries."""
        with self.assertRaises(ValidationError):
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='monthly',
                day_of_month=31,
                start_date=utc(2025, 1, 31, 10, 0),
                end_date=utc(2025, 1, 1)
            )

    def test_generated_ids_cannot_exceed_occurrences(self):
        """Test the occurrence cap invariant."""
        with self.assertRaises(ValidationError):
            RecurringBooking.objects.create(
                staff=self.staff,
                frequency='monthly',
                day_of_month=31,
                start_date=utc(2025, 1, 31, 10, 0),
                occurrences=1,
                generated_booking_ids=[1, 2]
            )

    def test_unknown_time_zone_is_invalid(self):
        """Test time zone validation."""
        with self.assertRaises(ValidationError) as ctx:
            Staff(name="Nowhere", time_zone='Mars/Olympus').full_clean()
        self.assertIn('time_zone', ctx.exception.message_dict)

    def test_booking_end_derived_from_duration(self):
        """Test end_datetime default."""
        created = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 1, 10, 0),
            duration_minutes=90
        )
        self.assertEqual(created.end_datetime, utc(2030, 1, 1, 11, 30))
        self.assertFalse(created.is_recurring)

    def test_booking_end_must_follow_start(self):
        """Test interval validation."""
        with self.assertRaises(ValidationError):
            Booking.objects.create(
                staff=self.staff,
                start_datetime=utc(2030, 1, 1, 10, 0),
                end_datetime=utc(2030, 1, 1, 10, 0)
            )


class ManagerTests(TestCase):
    """Test custom manager methods."""

    def setUp(self):
        self.staff = Staff.objects.create(name="Dana Coach")
        self.other_staff = Staff.objects.create(name="Eli Consultant")

        self.confirmed = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 1, 10, 0),
            end_datetime=utc(2030, 1, 1, 11, 0),
            status='confirmed'
        )
        self.cancelled = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 1, 12, 0),
            end_datetime=utc(2030, 1, 1, 13, 0),
            status='cancelled'
        )
        self.no_show = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 1, 14, 0),
            end_datetime=utc(2030, 1, 1, 15, 0),
            status='no-show'
        )
        Booking.objects.create(
            staff=self.other_staff,
            start_datetime=utc(2030, 1, 1, 10, 0),
            end_datetime=utc(2030, 1, 1, 11, 0),
            status='confirmed'
        )

    def test_for_staff(self):
        """Test filtering by staff member."""
        self.assertEqual(Booking.objects.for_staff(self.staff).count(), 3)

    def test_blocking(self):
        """Test that cancelled and no-show bookings are excluded."""
        blocking = Booking.objects.for_staff(self.staff).blocking()
        self.assertEqual(list(blocking), [self.confirmed])

    def test_touching_window(self):
        """Test that touching bookings are included."""
        touching = Booking.objects.for_staff(self.staff).touching_window(
            utc(2030, 1, 1, 11, 0),
            utc(2030, 1, 1, 12, 0)
        )
        self.assertEqual(set(touching), {self.confirmed, self.cancelled})

    def test_active_recurring_bookings(self):
        """Test active series filtering."""
        active = RecurringBooking.objects.create(
            staff=self.staff,
            frequency='weekly',
            day_of_week=2,
            start_date=utc(2030, 1, 1, 14, 0)
        )
        RecurringBooking.objects.create(
            staff=self.staff,
            frequency='weekly',
            day_of_week=2,
            start_date=utc(2030, 1, 1, 16, 0),
            status='paused'
        )
        RecurringBooking.objects.create(
            staff=self.staff,
            frequency='weekly',
            day_of_week=2,
            start_date=utc(2019, 1, 1, 16, 0),
            end_date=utc(2019, 6, 1)
        )
        self.assertEqual(list(RecurringBooking.objects.active()), [active])

    def test_status_counts(self):
        """Test per-status booking counts."""
        self.assertEqual(
            Booking.objects.status_counts(),
            {'confirmed': 2, 'cancelled': 1, 'no-show': 1}
        )
        self.assertEqual(Booking.objects.for_staff(self.staff).status_counts()['confirmed'], 1)

    def test_for_client_ignores_case(self):
        """Test client email filtering."""
        self.confirmed.client_email = 'sam@example.com'
        self.confirmed.save()

        clients = Booking.objects.get_queryset().for_client('SAM@Example.com')
        self.assertEqual(list(clients), [self.confirmed])


class RecurringBookingServiceTests(TestCase):
    """Test series creation and materialization."""

    def setUp(self):
        self.staff = Staff.objects.create(name="Dana Coach")

    def create(self, **overrides):
        max_to_generate = overrides.pop('max_to_generate', None)
        materialize = overrides.pop('materialize', True)
        fields = dict(
            staff_id=self.staff.pk,
            frequency='weekly',
            start_date=utc(2030, 1, 1, 14, 0),  # Tuesday
            duration_minutes=60,
            client_name="Sam Client",
            client_email="sam@example.com",
            day_of_week=2,
        )
        fields.update(overrides)
        return services.create_recurring_booking(
            RecurringBookingData(**fields),
            max_to_generate=max_to_generate,
            materialize=materialize
        )

    def test_create_materializes_occurrences(self):
        """Test creating a capped series."""
        pattern, result = self.create(occurrences=4)

        self.assertEqual(result.created_count, 4)
        self.assertTrue(result.exhausted)
        self.assertEqual(
            [b.start_datetime for b in result.created],
            [utc(2030, 1, d, 14, 0) for d in (1, 8, 15, 22)]
        )
        self.assertEqual(pattern.generated_booking_ids, [b.pk for b in result.created])
        for created in result.created:
            self.assertEqual(created.end_datetime - created.start_datetime, timedelta(minutes=60))
            self.assertEqual(created.status, 'confirmed')
            self.assertEqual(created.recurring_booking_id, pattern.pk)

    def test_day_of_week_defaults_to_start_date(self):
        """Test the weekday default."""
        pattern, _ = self.create(day_of_week=None, materialize=False)
        self.assertEqual(pattern.day_of_week, 2)

    def test_day_of_month_defaults_to_start_date(self):
        """Test the day-of-month default."""
        pattern, _ = self.create(
            frequency='monthly',
            day_of_week=None,
            start_date=utc(2030, 1, 31, 10, 0),
            materialize=False
        )
        self.assertEqual(pattern.day_of_month, 31)

    def test_invalid_rule_is_rejected(self):
        """Test that a mismatched weekday is not saved."""
        with self.assertRaises(ValidationError):
            self.create(day_of_week=3)
        self.assertEqual(RecurringBooking.objects.count(), 0)

    def test_monthly_series(self):
        """Test month-end materialization."""
        pattern, result = self.create(
            frequency='monthly',
            day_of_week=None,
            day_of_month=31,
            start_date=utc(2030, 1, 31, 10, 0),
            occurrences=3
        )
        self.assertEqual(
            [b.start_datetime for b in result.created],
            [utc(2030, 1, 31, 10, 0), utc(2030, 2, 28, 10, 0), utc(2030, 3, 31, 10, 0)]
        )

    def test_conflicting_occurrence_is_skipped(self):
        """Test that a taken slot is reported, not double booked."""
        blocker = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 8, 14, 30),
            end_datetime=utc(2030, 1, 8, 15, 0),
            status='confirmed'
        )

        pattern, result = self.create(occurrences=4)

        self.assertEqual(result.created_count, 3)
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.conflicts[0].start_datetime, utc(2030, 1, 8, 14, 0))
        self.assertEqual(result.conflicts[0].conflicting_booking_ids, [blocker.pk])
        self.assertEqual(len(pattern.generated_booking_ids), 3)

    def test_other_staff_bookings_do_not_conflict(self):
        """Test resource scoping."""
        other = Staff.objects.create(name="Eli Consultant")
        Booking.objects.create(
            staff=other,
            start_datetime=utc(2030, 1, 8, 14, 0),
            end_datetime=utc(2030, 1, 8, 15, 0),
            status='confirmed'
        )
        _, result = self.create(occurrences=2)
        self.assertEqual(result.created_count, 2)
        self.assertEqual(result.conflicts, [])

    def test_end_date_limits_series(self):
        """Test that bookings stop at end_date."""
        pattern, result = self.create(end_date=utc(2030, 1, 15, 14, 0))
        self.assertEqual(result.created_count, 3)
        self.assertTrue(result.exhausted)

    def test_extend_continues_series(self):
        """Test extending an open-ended series."""
        pattern, result = self.create(max_to_generate=3)
        self.assertEqual(result.created_count, 3)
        self.assertFalse(result.exhausted)

        result = services.extend_recurring_booking(pattern, max_to_generate=2)

        self.assertEqual(
            [b.start_datetime for b in result.created],
            [utc(2030, 1, 22, 14, 0), utc(2030, 1, 29, 14, 0)]
        )
        pattern.refresh_from_db()
        self.assertEqual(len(pattern.generated_booking_ids), 5)
        self.assertEqual(Booking.objects.for_series(pattern).count(), 5)

    def test_extend_does_not_recreate_rescheduled_occurrence(self):
        """Test that a moved booking still counts for its occurrence."""
        pattern, result = self.create(max_to_generate=2)
        services.reschedule_booking(result.created[1], utc(2030, 1, 9, 14, 0))

        result = services.extend_recurring_booking(pattern, max_to_generate=1)

        self.assertEqual([b.start_datetime for b in result.created], [utc(2030, 1, 15, 14, 0)])

    def test_occurrence_cap_is_never_exceeded(self):
        """Test extending an exhausted series."""
        pattern, _ = self.create(occurrences=2)

        result = services.extend_recurring_booking(pattern)

        self.assertEqual(result.created_count, 0)
        self.assertTrue(result.exhausted)
        pattern.refresh_from_db()
        self.assertEqual(len(pattern.generated_booking_ids), 2)

    def test_exhaustion_does_not_change_status(self):
        """Test that the engine only reports exhaustion."""
        pattern, result = self.create(occurrences=1)
        self.assertTrue(result.exhausted)
        pattern.refresh_from_db()
        self.assertEqual(pattern.status, 'active')

    def test_paused_series_is_not_materialized(self):
        """Test paused series."""
        pattern, _ = self.create(materialize=False)
        services.pause_recurring_booking(pattern)

        with self.assertRaises(ValueError):
            services.extend_recurring_booking(pattern)
        self.assertEqual(services.materialize_occurrences(pattern).created_count, 0)

    def test_extend_all_active(self):
        """Test bulk extension."""
        self.create(materialize=False)
        paused, _ = self.create(start_date=utc(2030, 1, 1, 18, 0), materialize=False)
        services.pause_recurring_booking(paused)

        self.assertEqual(services.extend_all_active_recurring_bookings(max_to_generate=4), 4)

    def test_upcoming_occurrences(self):
        """Test previewing the next dates."""
        pattern, _ = self.create(materialize=False)
        dates = services.get_upcoming_occurrences(pattern, count=2, from_date=utc(2030, 1, 2))
        self.assertEqual(dates, [utc(2030, 1, 8, 14, 0), utc(2030, 1, 15, 14, 0)])

    def test_status_transitions(self):
        """Test pause, resume, complete."""
        pattern, _ = self.create(materialize=False)

        services.pause_recurring_booking(pattern)
        self.assertEqual(pattern.status, 'paused')
        with self.assertRaises(ValueError):
            services.pause_recurring_booking(pattern)

        services.resume_recurring_booking(pattern)
        self.assertEqual(pattern.status, 'active')
        with self.assertRaises(ValueError):
            services.resume_recurring_booking(pattern)

        services.complete_recurring_booking(pattern)
        pattern.refresh_from_db()
        self.assertEqual(pattern.status, 'completed')
        with self.assertRaises(ValueError):
            services.complete_recurring_booking(pattern)

    def test_cancel_series_cancels_future_bookings(self):
        """Test series cancellation."""
        pattern, result = self.create(occurrences=3)

        services.cancel_recurring_booking(pattern, reason="Client moved away")

        pattern.refresh_from_db()
        self.assertEqual(pattern.status, 'cancelled')
        self.assertIsNotNone(pattern.end_date)
        statuses = set(Booking.objects.for_series(pattern).values_list('status', flat=True))
        self.assertEqual(statuses, {'cancelled'})

        with self.assertRaises(ValueError):
            services.cancel_recurring_booking(pattern)
        with self.assertRaises(ValueError):
            services.complete_recurring_booking(pattern)

    def test_cancel_series_can_keep_bookings(self):
        """Test cancelling only the rule."""
        pattern, _ = self.create(occurrences=2)
        services.cancel_recurring_booking(pattern, cancel_future_bookings=False)
        self.assertEqual(Booking.objects.for_series(pattern).filter(status='confirmed').count(), 2)

    def test_cancel_keeps_past_end_date(self):
        """Test that cancelling a finished series does not move its end date."""
        pattern = RecurringBooking.objects.create(
            staff=self.staff,
            frequency='weekly',
            day_of_week=2,
            start_date=utc(2019, 1, 1, 16, 0),
            end_date=utc(2019, 6, 1)
        )

        services.cancel_recurring_booking(pattern)

        pattern.refresh_from_db()
        self.assertEqual(pattern.status, 'cancelled')
        self.assertEqual(pattern.end_date, utc(2019, 6, 1))

    def test_cancel_future_series_ends_at_start(self):
        """Test that a series that has not started ends on its start date."""
        pattern, _ = self.create(end_date=utc(2030, 6, 1), materialize=False)

        services.cancel_recurring_booking(pattern)

        pattern.refresh_from_db()
        self.assertEqual(pattern.end_date, utc(2030, 1, 1, 14, 0))

    def test_monthly_series_in_local_zone(self):
        """Test a 15th-of-month evening series in Los Angeles."""
        pattern, result = self.create(
            frequency='monthly',
            day_of_week=None,
            day_of_month=15,
            start_date=datetime(2030, 1, 15, 20, 0, tzinfo=LOS_ANGELES),
            time_zone='America/Los_Angeles',
            occurrences=3
        )

        self.assertEqual(result.created_count, 3)
        local_starts = [
            timezone.localtime(b.start_datetime, LOS_ANGELES)
            for b in Booking.objects.for_series(pattern).order_by('start_datetime')
        ]
        self.assertEqual(
            [(d.month, d.day, d.hour) for d in local_starts],
            [(1, 15, 20), (2, 15, 20), (3, 15, 20)]
        )

    def test_monthly_start_off_day_of_month_is_rejected(self):
        """Test that no bookings are made for a misaligned monthly start."""
        with self.assertRaises(ValidationError):
            self.create(
                frequency='monthly',
                day_of_week=None,
                day_of_month=20,
                start_date=utc(2030, 1, 5, 10, 0),
                occurrences=3
            )
        self.assertEqual(Booking.objects.count(), 0)

    def test_extend_budget_counts_only_new_dates(self):
        """Test that a freed conflict date is booked on top of the requested count."""
        blocker = Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 8, 14, 30),
            end_datetime=utc(2030, 1, 8, 15, 0),
            status='confirmed'
        )
        pattern, result = self.create(max_to_generate=3)
        self.assertEqual(result.created_count, 2)
        self.assertEqual(len(result.conflicts), 1)

        services.cancel_booking(blocker)
        result = services.extend_recurring_booking(pattern, max_to_generate=2)

        self.assertEqual(
            [b.start_datetime for b in result.created],
            [utc(2030, 1, 8, 14, 0), utc(2030, 1, 22, 14, 0), utc(2030, 1, 29, 14, 0)]
        )
        self.assertEqual(result.conflicts, [])

    def test_update_rule(self):
        """Test that later extensions follow an updated interval."""
        pattern, _ = self.create(max_to_generate=2)

        updated = services.update_recurring_booking(
            pattern,
            RecurringBookingUpdateData(interval=2, occurrences=4, client_name="Sam Renamed")
        )
        self.assertEqual(updated.interval, 2)
        self.assertEqual(updated.client_name, "Sam Renamed")

        result = services.extend_recurring_booking(updated, max_to_generate=1)
        self.assertEqual([b.start_datetime for b in result.created], [utc(2030, 1, 15, 14, 0)])
        # Bookings made under the old rule are kept
        self.assertEqual(Booking.objects.for_series(pattern).count(), 3)

    def test_update_start_date_recomputes_start_time(self):
        """Test moving a weekly series to Thursday mornings."""
        pattern, _ = self.create(materialize=False)

        services.update_recurring_booking(
            pattern,
            RecurringBookingUpdateData(start_date=utc(2030, 1, 3, 9, 0), day_of_week=4)
        )

        pattern.refresh_from_db()
        self.assertEqual(pattern.day_of_week, 4)
        self.assertEqual(pattern.start_time, time(9, 0))

    def test_update_frequency_switches_day_fields(self):
        """Test switching a weekly series to monthly."""
        pattern, _ = self.create(materialize=False)

        services.update_recurring_booking(pattern, RecurringBookingUpdateData(frequency='monthly'))

        pattern.refresh_from_db()
        self.assertEqual(pattern.frequency, 'monthly')
        self.assertIsNone(pattern.day_of_week)
        self.assertEqual(pattern.day_of_month, 1)

    def test_update_validates_merged_rule(self):
        """Test that the occurrence cap cannot drop below generated bookings."""
        pattern, _ = self.create(occurrences=3)

        with self.assertRaises(ValidationError):
            services.update_recurring_booking(pattern, RecurringBookingUpdateData(occurrences=2))
        pattern.refresh_from_db()
        self.assertEqual(pattern.occurrences, 3)

        with self.assertRaises(ValueError):
            services.update_recurring_booking(pattern, RecurringBookingUpdateData(duration_minutes=0))

    def test_update_closed_series_is_rejected(self):
        """Test that cancelled series cannot be updated."""
        pattern, _ = self.create(materialize=False)
        services.cancel_recurring_booking(pattern)

        with self.assertRaises(ValueError):
            services.update_recurring_booking(pattern, RecurringBookingUpdateData(interval=2))

    def test_recurring_booking_stats(self):
        """Test series counts."""
        self.create(materialize=False)
        paused, _ = self.create(start_date=utc(2030, 1, 1, 18, 0), materialize=False)
        services.pause_recurring_booking(paused)

        stats = services.get_recurring_booking_stats()

        self.assertEqual(stats['total_recurring'], 2)
        self.assertEqual(stats['active_recurring'], 1)
        self.assertEqual(stats['by_status'], {'active': 1, 'paused': 1})


class BookingServiceTests(TestCase):
    """Test one-off booking operations."""

    def setUp(self):
        self.staff = Staff.objects.create(name="Dana Coach")
        self.booking = services.create_booking(
            staff_id=self.staff.pk,
            start_datetime=utc(2030, 1, 1, 10, 0),
            duration_minutes=60,
            client_email="sam@example.com"
        )

    def test_create_booking(self):
        """Test creating a one-off booking."""
        self.assertEqual(self.booking.status, 'pending')
        self.assertEqual(self.booking.end_datetime, utc(2030, 1, 1, 11, 0))

    def test_overlapping_booking_is_rejected(self):
        """Test double booking."""
        with self.assertRaises(SlotUnavailableError) as ctx:
            services.create_booking(
                staff_id=self.staff.pk,
                start_datetime=utc(2030, 1, 1, 10, 30)
            )
        self.assertEqual(ctx.exception.conflicting_booking_ids, [self.booking.pk])

    def test_back_to_back_booking_is_accepted(self):
        """Test touching intervals."""
        next_booking = services.create_booking(
            staff_id=self.staff.pk,
            start_datetime=utc(2030, 1, 1, 11, 0)
        )
        self.assertIsNotNone(next_booking.pk)

    def test_non_positive_duration_is_rejected(self):
        """Test duration validation."""
        with self.assertRaises(ValueError):
            services.create_booking(
                staff_id=self.staff.pk,
                start_datetime=utc(2030, 1, 2, 10, 0),
                duration_minutes=0
            )

    def test_check_availability(self):
        """Test availability with and without exclusion."""
        self.assertFalse(services.check_availability(
            self.staff, utc(2030, 1, 1, 10, 30), utc(2030, 1, 1, 11, 30)
        ))
        self.assertTrue(services.check_availability(
            self.staff, utc(2030, 1, 1, 10, 30), utc(2030, 1, 1, 11, 30),
            exclude_booking_id=self.booking.pk
        ))

    def test_reschedule_over_own_slot(self):
        """Test moving a booking by half an hour."""
        updated = services.reschedule_booking(self.booking, utc(2030, 1, 1, 10, 30))

        self.assertEqual(updated.start_datetime, utc(2030, 1, 1, 10, 30))
        self.assertEqual(updated.end_datetime, utc(2030, 1, 1, 11, 30))
        self.assertEqual(updated.status, 'confirmed')

    def test_reschedule_with_explicit_end(self):
        """Test changing the duration while rescheduling."""
        updated = services.reschedule_booking(
            self.booking, utc(2030, 1, 1, 13, 0), utc(2030, 1, 1, 13, 45)
        )
        self.assertEqual(updated.duration_minutes, 45)

    def test_reschedule_into_taken_slot(self):
        """Test rescheduling onto another booking."""
        other = services.create_booking(
            staff_id=self.staff.pk,
            start_datetime=utc(2030, 1, 1, 14, 0)
        )
        with self.assertRaises(SlotUnavailableError):
            services.reschedule_booking(other, utc(2030, 1, 1, 10, 15))

    def test_cancelled_booking_frees_slot(self):
        """Test cancelling and re-booking a slot."""
        services.cancel_booking(self.booking, reason="Sick")
        self.assertEqual(self.booking.status, 'cancelled')
        self.assertIsNotNone(self.booking.cancelled_at)
        self.assertTrue(services.check_availability(
            self.staff, utc(2030, 1, 1, 10, 0), utc(2030, 1, 1, 11, 0)
        ))
        with self.assertRaises(ValueError):
            services.cancel_booking(self.booking)

    def test_no_show_frees_slot(self):
        """Test that a no-show does not block."""
        services.mark_no_show(self.booking)
        self.assertTrue(services.check_availability(
            self.staff, utc(2030, 1, 1, 10, 0), utc(2030, 1, 1, 11, 0)
        ))

    def test_confirm_and_complete(self):
        """Test booking status changes."""
        services.confirm_booking(self.booking)
        self.assertEqual(self.booking.status, 'confirmed')
        with self.assertRaises(ValueError):
            services.confirm_booking(self.booking)

        services.complete_booking(self.booking)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'completed')
        with self.assertRaises(ValueError):
            services.reschedule_booking(self.booking, utc(2030, 1, 3, 10, 0))

    def test_get_bookings_in_range(self):
        """Test range queries."""
        bookings = services.get_bookings_in_range(utc(2030, 1, 1), utc(2030, 1, 2))
        self.assertEqual(bookings, [self.booking])

        with self.assertRaises(ValueError):
            services.get_bookings_in_range(utc(2030, 1, 2), utc(2030, 1, 1))

    def test_get_bookings_in_range_for_client(self):
        """Test filtering a range by client email."""
        services.create_booking(
            staff_id=self.staff.pk,
            start_datetime=utc(2030, 1, 1, 12, 0),
            client_email="alex@example.com"
        )

        bookings = services.get_bookings_in_range(
            utc(2030, 1, 1), utc(2030, 1, 2), client_email="Sam@Example.com"
        )
        self.assertEqual(bookings, [self.booking])

    def test_booking_stats(self):
        """Test booking counts."""
        other = services.create_booking(staff_id=self.staff.pk, start_datetime=utc(2030, 1, 1, 12, 0))
        services.confirm_booking(other)

        stats = services.get_booking_stats()

        self.assertEqual(stats['total_bookings'], 2)
        self.assertEqual(stats['by_status'], {'pending': 1, 'confirmed': 1})


class ReminderServiceTests(TestCase):
    """Test booking reminders."""

    def setUp(self):
        self.now = utc(2030, 1, 1, 12, 0)
        self.staff = Staff.objects.create(name="Dana Coach")

    def make_booking(self, start, booking_status='confirmed', email="sam@example.com"):
        return Booking.objects.create(
            staff=self.staff,
            client_name="Sam",
            client_email=email,
            start_datetime=start,
            end_datetime=start + timedelta(hours=1),
            status=booking_status
        )

    def test_24h_window(self):
        """Test which bookings are due for the 24h reminder."""
        due = self.make_booking(self.now + timedelta(hours=24, minutes=5))
        self.make_booking(self.now + timedelta(hours=24, minutes=20))
        self.make_booking(self.now + timedelta(hours=24, minutes=10), booking_status='cancelled')

        self.assertEqual(services.find_bookings_needing_reminders('24h', now=self.now), [due])

    def test_1h_window(self):
        """Test which bookings are due for the 1h reminder."""
        due = self.make_booking(self.now + timedelta(hours=1))
        self.make_booking(self.now + timedelta(hours=24, minutes=5))

        self.assertEqual(services.find_bookings_needing_reminders('1h', now=self.now), [due])

    def test_sent_reminder_is_not_repeated(self):
        """Test reminder bookkeeping."""
        due = self.make_booking(self.now + timedelta(hours=24, minutes=5))
        services.record_reminder_sent(due, '24h')

        self.assertEqual(services.find_bookings_needing_reminders('24h', now=self.now), [])
        due.refresh_from_db()
        self.assertTrue(due.has_reminder('24h'))
        self.assertFalse(due.has_reminder('1h'))

    def test_invalid_reminder_type(self):
        """Test unknown reminder types."""
        with self.assertRaises(ValueError):
            services.find_bookings_needing_reminders('2h', now=self.now)

    def test_send_reminder_email(self):
        """Test sending a reminder."""
        due = self.make_booking(self.now + timedelta(hours=24, minutes=5))

        self.assertTrue(services.send_booking_reminder(due, '24h'))

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('tomorrow', mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["sam@example.com"])
        due.refresh_from_db()
        self.assertTrue(due.has_reminder('24h'))

    def test_reminder_without_email_fails(self):
        """Test bookings without a client email."""
        due = self.make_booking(self.now + timedelta(hours=24, minutes=5), email='')
        self.assertFalse(services.send_booking_reminder(due, '24h'))
        self.assertEqual(len(mail.outbox), 0)

    def test_send_due_reminders(self):
        """Test the batch sender."""
        self.make_booking(self.now + timedelta(hours=1, minutes=5))
        self.make_booking(self.now + timedelta(hours=1, minutes=10), email='')

        self.assertEqual(services.send_due_reminders('1h', now=self.now), (1, 1))


class RecurringBookingAPITests(APITestCase):
    """Test recurring booking API endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.staff = Staff.objects.create(name="Dana Coach")
        self.payload = {
            "staff": self.staff.pk,
            "client_name": "Sam Client",
            "client_email": "sam@example.com",
            "frequency": "weekly",
            "day_of_week": 2,
            "start_date": "2030-01-01T14:00:00Z",
            "duration_minutes": 60,
            "occurrences": 3,
        }

    def create_series(self, **overrides):
        payload = dict(self.payload, **overrides)
        return self.client.post('/api/recurring-bookings/', payload, format='json')

    def test_create_recurring_booking(self):
        """Test creating a series via API."""
        response = self.create_series()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['bookings_created'], 3)
        self.assertEqual(len(response.data['recurring_booking']['generated_booking_ids']), 3)
        self.assertEqual(response.data['recurring_booking']['remaining_occurrences'], 0)
        self.assertTrue(response.data['exhausted'])

    def test_create_without_generation(self):
        """Test deferring materialization."""
        response = self.create_series(generate_bookings=False)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['bookings_created'], 0)
        self.assertEqual(Booking.objects.count(), 0)

    def test_create_reports_conflicts(self):
        """Test conflicting occurrences in the response."""
        Booking.objects.create(
            staff=self.staff,
            start_datetime=utc(2030, 1, 8, 14, 0),
            end_datetime=utc(2030, 1, 8, 15, 0),
            status='confirmed'
        )
        response = self.create_series()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['bookings_created'], 2)
        self.assertEqual(len(response.data['conflicts']), 1)

    def test_monthly_with_day_of_week_is_rejected(self):
        """Test serializer validation."""
        response = self.create_series(frequency='monthly', day_of_month=1)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_weekday_mismatch_is_rejected(self):
        """Test model validation surfacing as 400."""
        response = self.create_series(day_of_week=4)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('start_date', response.data)
        self.assertEqual(RecurringBooking.objects.count(), 0)

    def test_monthly_start_off_day_of_month_is_rejected(self):
        """Test a monthly series whose start is not on its day of month."""
        response = self.create_series(
            frequency='monthly',
            day_of_week=None,
            day_of_month=20,
            start_date="2030-01-05T10:00:00Z"
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('start_date', response.data)
        self.assertEqual(Booking.objects.count(), 0)

    def test_monthly_series_in_local_zone(self):
        """Test that bookings land on the 15th in the series' zone."""
        response = self.create_series(
            frequency='monthly',
            day_of_week=None,
            day_of_month=15,
            start_date="2030-01-15T20:00:00-08:00",
            time_zone="America/Los_Angeles"
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['bookings_created'], 3)
        for created in Booking.objects.all():
            local = timezone.localtime(created.start_datetime, LOS_ANGELES)
            self.assertEqual((local.day, local.hour), (15, 20))

    def test_update_recurring_booking(self):
        """Test a partial rule update."""
        pk = self.create_series().data['recurring_booking']['id']

        response = self.client.patch(
            f'/api/recurring-bookings/{pk}/',
            {"interval": 2, "client_name": "Sam Renamed"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['interval'], 2)
        self.assertEqual(response.data['client_name'], "Sam Renamed")
        self.assertEqual(response.data['frequency'], 'weekly')

    def test_update_without_fields_is_rejected(self):
        """Test an empty update."""
        pk = self.create_series().data['recurring_booking']['id']

        response = self.client.patch(f'/api/recurring-bookings/{pk}/', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_invalid_merged_rule(self):
        """Test model validation of the merged rule surfacing as 400."""
        pk = self.create_series().data['recurring_booking']['id']

        response = self.client.patch(
            f'/api/recurring-bookings/{pk}/',
            {"day_of_week": 4},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('start_date', response.data)
        self.assertEqual(RecurringBooking.objects.get(pk=pk).day_of_week, 2)

    def test_recurring_booking_stats(self):
        """Test the stats endpoint."""
        self.create_series()

        response = self.client.get('/api/recurring-bookings/stats/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {
            'total_recurring': 1,
            'active_recurring': 1,
            'by_status': {'active': 1},
        })

    def test_list_filtered_by_client(self):
        """Test the client_email filter."""
        self.create_series()
        self.create_series(client_email="alex@example.com", start_date="2030-01-01T18:00:00Z")

        response = self.client.get('/api/recurring-bookings/', {'client_email': 'ALEX@example.com'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['client_email'], "alex@example.com")

    def test_unknown_staff(self):
        """Test a missing staff member."""
        response = self.create_series(staff=9999)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_and_detail(self):
        """Test listing and retrieving series."""
        series_id = self.create_series().data['recurring_booking']['id']

        response = self.client.get('/api/recurring-bookings/', {'staff': self.staff.pk})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

        response = self.client.get(f'/api/recurring-bookings/{series_id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['frequency'], 'weekly')

    def test_status_actions(self):
        """Test pause, resume and cancel endpoints."""
        series_id = self.create_series().data['recurring_booking']['id']

        response = self.client.post(f'/api/recurring-bookings/{series_id}/pause/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'paused')

        response = self.client.post(f'/api/recurring-bookings/{series_id}/pause/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(f'/api/recurring-bookings/{series_id}/resume/')
        self.assertEqual(response.data['status'], 'active')

        response = self.client.post(f'/api/recurring-bookings/{series_id}/cancel/')
        self.assertEqual(response.data['status'], 'cancelled')
        self.assertFalse(Booking.objects.filter(status='confirmed').exists())

    def test_unknown_action_is_not_routed(self):
        """Test that only known transitions are routed."""
        series_id = self.create_series().data['recurring_booking']['id']
        response = self.client.post(f'/api/recurring-bookings/{series_id}/explode/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_extend(self):
        """Test extending an open-ended series."""
        response = self.create_series(occurrences=None, max_to_generate=2)
        series_id = response.data['recurring_booking']['id']

        response = self.client.post(
            f'/api/recurring-bookings/{series_id}/extend/',
            {'max_to_generate': 3},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['bookings_created'], 3)
        self.assertEqual(Booking.objects.count(), 5)

    def test_upcoming(self):
        """Test the upcoming occurrence preview."""
        series_id = self.create_series(occurrences=None, generate_bookings=False).data['recurring_booking']['id']

        response = self.client.get(f'/api/recurring-bookings/{series_id}/upcoming/', {'count': 4})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['occurrences']), 4)


class BookingAPITests(APITestCase):
    """Test booking and availability API endpoints."""

    def setUp(self):
        self.client = APIClient()
        self.staff = Staff.objects.create(name="Dana Coach")
        self.booking = Booking.objects.create(
            staff=self.staff,
            client_email="sam@example.com",
            start_datetime=utc(2030, 1, 1, 10, 0),
            end_datetime=utc(2030, 1, 1, 11, 0),
            status='confirmed'
        )

    def test_create_booking(self):
        """Test creating a one-off booking."""
        response = self.client.post('/api/bookings/', {
            "staff": self.staff.pk,
            "client_email": "alex@example.com",
            "start_datetime": "2030-01-01T11:00:00Z",
            "duration_minutes": 30
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertFalse(response.data['is_recurring'])

    def test_create_conflicting_booking(self):
        """Test the conflict response."""
        response = self.client.post('/api/bookings/', {
            "staff": self.staff.pk,
            "start_datetime": "2030-01-01T10:30:00Z",
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['conflicting_booking_ids'], [self.booking.pk])

    def test_list_bookings_in_range(self):
        """Test listing bookings with a date range."""
        response = self.client.get('/api/bookings/', {
            'start': '2030-01-01T00:00:00Z',
            'end': '2030-01-31T23:59:59Z',
            'staff': self.staff.pk
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_list_bookings_for_client(self):
        """Test the client_email filter on the range listing."""
        response = self.client.get('/api/bookings/', {
            'start': '2030-01-01T00:00:00Z',
            'end': '2030-01-31T23:59:59Z',
            'client_email': 'someone@example.com'
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, [])

        response = self.client.get('/api/bookings/', {
            'start': '2030-01-01T00:00:00Z',
            'end': '2030-01-31T23:59:59Z',
            'client_email': 'sam@example.com'
        })
        self.assertEqual(len(response.data), 1)

    def test_booking_stats(self):
        """Test the booking stats endpoint."""
        response = self.client.get('/api/bookings/stats/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'total_bookings': 1, 'by_status': {'confirmed': 1}})

    def test_invalid_range(self):
        """Test range validation."""
        response = self.client.get('/api/bookings/', {
            'start': '2030-01-31T00:00:00Z',
            'end': '2030-01-01T00:00:00Z'
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_booking_detail(self):
        """Test retrieving a booking."""
        response = self.client.get(f'/api/bookings/{self.booking.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['client_email'], "sam@example.com")

    def test_reschedule_booking(self):
        """Test moving a booking over its own slot."""
        response = self.client.patch(
            f'/api/bookings/{self.booking.pk}/',
            {"start_datetime": "2030-01-01T10:30:00Z"},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.start_datetime, utc(2030, 1, 1, 10, 30))

    def test_cancel_booking(self):
        """Test cancelling a booking."""
        response = self.client.delete(f'/api/bookings/{self.booking.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'cancelled')

        response = self.client.delete(f'/api/bookings/{self.booking.pk}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_availability(self):
        """Test the availability endpoint."""
        params = {
            'staff': self.staff.pk,
            'start': '2030-01-01T10:30:00Z',
            'end': '2030-01-01T11:30:00Z',
        }
        response = self.client.get('/api/availability/', params)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['available'])

        response = self.client.get('/api/availability/', dict(params, exclude=self.booking.pk))
        self.assertTrue(response.data['available'])

        response = self.client.get('/api/availability/', dict(params, start='2030-01-01T11:00:00Z'))
        self.assertTrue(response.data['available'])


class ManagementCommandTests(TestCase):
    """Test management commands."""

    def setUp(self):
        self.staff = Staff.objects.create(name="Dana Coach")

    def test_extend_recurring_bookings_command(self):
        """Test the extend_recurring_bookings management command."""
        services.create_recurring_booking(
            RecurringBookingData(
                staff_id=self.staff.pk,
                frequency='biweekly',
                start_date=utc(2030, 1, 1, 14, 0),
                duration_minutes=45,
            ),
            materialize=False
        )

        out = StringIO()
        call_command('extend_recurring_bookings', '--max=3', stdout=out)

        self.assertIn('Successfully created 3', out.getvalue())
        starts = list(Booking.objects.values_list('start_datetime', flat=True))
        self.assertEqual(starts, [utc(2030, 1, 1, 14, 0), utc(2030, 1, 15, 14, 0), utc(2030, 1, 29, 14, 0)])

    def test_send_booking_reminders_command(self):
        """Test the send_booking_reminders management command."""
        start = timezone.now() + timedelta(hours=24, minutes=5)
        Booking.objects.create(
            staff=self.staff,
            client_email="sam@example.com",
            start_datetime=start,
            end_datetime=start + timedelta(hours=1),
            status='confirmed'
        )

        out = StringIO()
        call_command('send_booking_reminders', '--type=24h', stdout=out)

        self.assertIn('24h reminders: 1 sent, 0 failed', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)
