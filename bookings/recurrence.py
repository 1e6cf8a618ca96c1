"""
Recurrence engine for recurring bookings.

Pure functions only: nothing here touches the database or logs. Every
function accepts any object exposing the RecurringBooking attributes
(frequency, interval, day_of_week, day_of_month, start_date, time_zone,
end_date, occurrences, generated_booking_ids), so unsaved model
instances work too.

Weekday numbering follows the booking wizard: 0=Sunday, 6=Saturday.

Dates are stepped on the wall clock of the pattern's time_zone, so a
series keeps its local day and time of day across DST changes and UTC
day boundaries. Returned datetimes carry that zone.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.core.exceptions import ValidationError
from django.utils import timezone

from .types import (
    DEFAULT_GENERATION_CAP,
    FREQUENCY_BIWEEKLY,
    FREQUENCY_MONTHLY,
    FREQUENCY_WEEKLY,
    FREQUENCIES,
    MAX_UPCOMING_ITERATIONS,
    MAX_UPCOMING_OCCURRENCES,
)


WEEKLY_STEP_DAYS = 7
BIWEEKLY_STEP_DAYS = 14


def days_in_month(year: int, month: int) -> int:
    """Number of days in the given month."""
    return calendar.monthrange(year, month)[1]


def add_months(value: datetime, months: int, day: int) -> datetime:
    """
    Move `value` forward by `months` calendar months and set the day.

    The day is clamped to the last day of the target month, so day 31
    lands on Feb 28/29, Apr 30 and so on. Time of day and tzinfo are kept.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    return value.replace(
        year=year,
        month=month,
        day=min(day, days_in_month(year, month)),
    )


def js_weekday(value: date) -> int:
    """Weekday with Sunday=0 numbering."""
    return (value.weekday() + 1) % 7


def to_datetime(value, tzinfo=None) -> datetime:
    """Promote a date to midnight in `tzinfo`; datetimes pass through."""
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min, tzinfo=tzinfo)


def series_start(pattern) -> datetime:
    """start_date as wall-clock time in the pattern's time zone."""
    anchor = pattern.start_date
    zone_name = getattr(pattern, 'time_zone', None)
    if not zone_name or timezone.is_naive(anchor):
        return anchor
    return timezone.localtime(anchor, ZoneInfo(zone_name))


def _in_zone_of(value: datetime, anchor: datetime) -> datetime:
    if timezone.is_naive(value) or timezone.is_naive(anchor):
        return value
    return value.astimezone(anchor.tzinfo)


def validate_pattern(pattern) -> None:
    """
    Check that a pattern is structurally usable.

    Raises:
        ValidationError: unknown frequency, missing day field for the
            frequency, non-positive interval, out-of-range day values or an
            unknown time zone.
    """
    errors = {}

    if pattern.frequency not in FREQUENCIES:
        errors['frequency'] = f"Unrecognized frequency: {pattern.frequency!r}."

    interval = pattern.interval
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        errors['interval'] = 'Interval must be a positive integer.'

    if pattern.frequency in (FREQUENCY_WEEKLY, FREQUENCY_BIWEEKLY):
        if pattern.day_of_week is None:
            errors['day_of_week'] = 'Day of week is required for weekly patterns.'
        elif not 0 <= pattern.day_of_week <= 6:
            errors['day_of_week'] = 'Day of week must be between 0 (Sunday) and 6 (Saturday).'

    if pattern.frequency == FREQUENCY_MONTHLY:
        if pattern.day_of_month is None:
            errors['day_of_month'] = 'Day of month is required for monthly patterns.'
        elif not 1 <= pattern.day_of_month <= 31:
            errors['day_of_month'] = 'Day of month must be between 1 and 31.'

    zone_name = getattr(pattern, 'time_zone', None)
    if zone_name:
        try:
            ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors['time_zone'] = f"Unknown time zone: {zone_name}"

    if errors:
        raise ValidationError(errors)


def is_exhausted(pattern) -> bool:
    """True when the occurrence cap has already been materialized."""
    if not pattern.occurrences:
        return False
    return len(pattern.generated_booking_ids or []) >= pattern.occurrences


def calculate_next_occurrence(pattern, from_date) -> Optional[datetime]:
    """
    Next occurrence on the pattern's cadence that is on or after `from_date`.

    Args:
        pattern: RecurringBooking (or any object with the same attributes)
        from_date: date or datetime to search from (inclusive)

    Returns:
        The occurrence in the pattern's time zone, at start_date's local
        time of day, or None once the series is exhausted by end_date or
        by the occurrence cap.

    Raises:
        ValidationError: if the pattern is structurally invalid
    """
    validate_pattern(pattern)

    anchor = series_start(pattern)
    from_dt = _in_zone_of(to_datetime(from_date, anchor.tzinfo), anchor)

    if pattern.frequency == FREQUENCY_MONTHLY:
        candidate = _next_monthly(anchor, pattern.day_of_month, pattern.interval, from_dt)
    else:
        candidate = _next_weekly(anchor, _step_days(pattern), from_dt)

    if pattern.end_date and candidate > to_datetime(pattern.end_date, anchor.tzinfo):
        return None

    if is_exhausted(pattern):
        return None

    return candidate


def generate_occurrence_dates(
    pattern,
    max_to_generate: int = DEFAULT_GENERATION_CAP
) -> List[datetime]:
    """
    Ordered occurrence dates for a pattern, starting with start_date.

    The start date is always the first entry. Each following entry is the
    resolver's answer for the day after the previous one, until the series
    ends or the cap is reached. The cap is max_to_generate, further limited
    by the pattern's occurrence count when set.
    """
    validate_pattern(pattern)

    limit = max_to_generate
    if pattern.occurrences:
        limit = min(limit, pattern.occurrences)
    if limit <= 0:
        return []

    dates = [series_start(pattern)]
    while len(dates) < limit:
        next_date = calculate_next_occurrence(pattern, dates[-1] + timedelta(days=1))
        if next_date is None:
            break
        dates.append(next_date)

    return dates


def upcoming_occurrences(
    pattern,
    from_date,
    count: int = 5
) -> List[datetime]:
    """
    The next `count` occurrences on or after `from_date`.

    `count` is clamped to 1..MAX_UPCOMING_OCCURRENCES and the walk gives up
    after MAX_UPCOMING_ITERATIONS lookups.
    """
    validate_pattern(pattern)

    limit = max(1, min(int(count), MAX_UPCOMING_OCCURRENCES))
    anchor = series_start(pattern)
    search_from = max(
        _in_zone_of(to_datetime(from_date, anchor.tzinfo), anchor),
        anchor,
    )

    # With an occurrence cap the series ends at its last counted date
    last_date = None
    if pattern.occurrences:
        last_date = generate_occurrence_dates(pattern, pattern.occurrences)[-1]

    occurrences = []
    for _ in range(MAX_UPCOMING_ITERATIONS):
        if len(occurrences) >= limit:
            break
        next_date = calculate_next_occurrence(pattern, search_from)
        if next_date is None or (last_date is not None and next_date > last_date):
            break
        occurrences.append(next_date)
        search_from = next_date + timedelta(days=1)

    return occurrences


def _step_days(pattern) -> int:
    if pattern.frequency == FREQUENCY_BIWEEKLY:
        return BIWEEKLY_STEP_DAYS
    return WEEKLY_STEP_DAYS * pattern.interval


def _next_weekly(anchor: datetime, step_days: int, from_dt: datetime) -> datetime:
    if from_dt <= anchor:
        return anchor

    step = timedelta(days=step_days)
    steps = -(-(from_dt - anchor) // step)  # ceiling division
    return anchor + steps * step


def _next_monthly(
    anchor: datetime,
    day_of_month: int,
    interval: int,
    from_dt: datetime
) -> datetime:
    months_apart = (from_dt.year - anchor.year) * 12 + (from_dt.month - anchor.month)
    steps = max(0, months_apart // interval)

    candidate = add_months(anchor, steps * interval, day_of_month)
    while candidate < from_dt:
        steps += 1
        candidate = add_months(anchor, steps * interval, day_of_month)
    return candidate
