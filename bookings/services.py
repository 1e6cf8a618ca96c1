"""
Service layer for booking business logic.

Services own transactions and persistence; the date arithmetic lives in
bookings.recurrence and the overlap rule in bookings.conflicts.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from .conflicts import find_conflicts
from .models import Booking, RecurringBooking, Staff
from .recurrence import generate_occurrence_dates, is_exhausted, js_weekday, upcoming_occurrences
from .types import (
    FREQUENCY_MONTHLY,
    REMINDER_24H,
    REMINDER_LOOKAHEAD_HOURS,
    REMINDER_WINDOW_MINUTES,
    MaterializationResult,
    OccurrenceConflict,
    RecurringBookingData,
    RecurringBookingUpdateData,
    generation_cap,
)

logger = logging.getLogger(__name__)


class SlotUnavailableError(ValueError):
    """The requested interval collides with an existing booking."""

    def __init__(self, message, conflicting_booking_ids=None):
        super().__init__(message)
        self.conflicting_booking_ids = conflicting_booking_ids or []


# ---------------------------------------------------------------------------
# Recurring bookings
# ---------------------------------------------------------------------------

@transaction.atomic
def create_recurring_booking(
    data: RecurringBookingData,
    max_to_generate: Optional[int] = None,
    materialize: bool = True
) -> Tuple[RecurringBooking, MaterializationResult]:
    """
    Create a recurring booking and materialize its first occurrences.

    Args:
        data: RecurringBookingData with the rule fields
        max_to_generate: How many occurrences to materialize now
            (defaults to the configured generation cap)
        materialize: Whether to create bookings immediately

    Returns:
        Tuple of (created RecurringBooking, MaterializationResult)

    Raises:
        ValidationError: If the rule is invalid
        Staff.DoesNotExist: If the staff member does not exist
    """
    staff = Staff.objects.get(pk=data.staff_id)
    _validate_duration(data.duration_minutes)

    day_of_week, day_of_month = _default_day_fields(
        data.frequency,
        _local_start(data.start_date, data.time_zone),
        data.day_of_week,
        data.day_of_month
    )

    pattern = RecurringBooking.objects.create(
        staff=staff,
        client_name=data.client_name,
        client_email=data.client_email,
        frequency=data.frequency,
        interval=data.interval,
        day_of_week=day_of_week,
        day_of_month=day_of_month,
        start_time=data.start_time,
        start_date=data.start_date,
        time_zone=data.time_zone,
        duration_minutes=data.duration_minutes,
        end_date=data.end_date,
        occurrences=data.occurrences,
        status=RecurringBooking.Status.ACTIVE
    )
    logger.info(
        "Created %s recurring booking %s for staff %s",
        pattern.frequency, pattern.pk, staff.pk
    )

    result = MaterializationResult()
    if materialize:
        result = materialize_occurrences(pattern, max_to_generate)

    return pattern, result


@transaction.atomic
def materialize_occurrences(
    pattern: RecurringBooking,
    max_to_generate: Optional[int] = None
) -> MaterializationResult:
    """
    Turn generated occurrence dates into Booking rows.

    Dates already materialized for the series are skipped. Each new date is
    checked against the staff member's calendar; taken slots are reported
    in the result instead of being booked. The staff row is locked for the
    duration of the transaction so concurrent requests for the same staff
    member cannot both pass the availability check.

    max_to_generate counts dates after the latest materialized occurrence.
    Earlier dates that are still unbooked (conflicts from a previous run)
    are retried on top of that budget.

    Args:
        pattern: RecurringBooking to materialize
        max_to_generate: Number of dates past the latest materialized
            occurrence to consider (defaults to the generation cap)

    Returns:
        MaterializationResult with created bookings and conflicts
    """
    Staff.objects.select_for_update().get(pk=pattern.staff_id)
    pattern.refresh_from_db()

    if pattern.status != RecurringBooking.Status.ACTIVE:
        logger.info("Skipping materialization of %s recurring booking %s", pattern.status, pattern.pk)
        return MaterializationResult()

    if max_to_generate is None:
        max_to_generate = generation_cap()

    result = MaterializationResult()
    existing_starts = set(
        Booking.objects.for_series(pattern)
        .exclude(occurrence_datetime__isnull=True)
        .values_list('occurrence_datetime', flat=True)
    )
    latest = max(existing_starts) if existing_starts else None

    # Grow the window until it holds max_to_generate dates after the latest
    # materialized occurrence, or the series ends
    window = len(pattern.generated_booking_ids) + max_to_generate
    while True:
        dates = generate_occurrence_dates(pattern, window)
        if latest is None:
            retried, new = [], dates
        else:
            retried = [d for d in dates if d < latest and d not in existing_starts]
            new = [d for d in dates if d > latest]
        if len(new) >= max_to_generate or len(dates) < window:
            break
        window += max_to_generate - len(new)

    pending = retried + new[:max_to_generate]
    if not pending:
        result.exhausted = len(dates) < window or is_exhausted(pattern)
        return result

    duration = timedelta(minutes=pattern.duration_minutes)
    staff_bookings = list(
        Booking.objects.for_staff(pattern.staff_id)
        .blocking()
        .touching_window(pending[0], pending[-1] + duration)
    )

    for start in pending:
        if is_exhausted(pattern):
            result.exhausted = True
            break

        end = start + duration
        conflicts = find_conflicts(pattern.staff_id, start, end, staff_bookings)
        if conflicts:
            result.conflicts.append(OccurrenceConflict(
                start_datetime=start,
                end_datetime=end,
                conflicting_booking_ids=[booking.pk for booking in conflicts]
            ))
            continue

        booking = Booking.objects.create(
            staff_id=pattern.staff_id,
            recurring_booking=pattern,
            client_name=pattern.client_name,
            client_email=pattern.client_email,
            start_datetime=start,
            occurrence_datetime=start,
            end_datetime=end,
            time_zone=pattern.time_zone,
            duration_minutes=pattern.duration_minutes,
            status=Booking.Status.CONFIRMED
        )
        pattern.generated_booking_ids.append(booking.pk)
        staff_bookings.append(booking)
        result.created.append(booking)
    else:
        result.exhausted = len(dates) < window or is_exhausted(pattern)

    if result.created:
        pattern.save()

    if result.conflicts:
        logger.warning(
            "Recurring booking %s: %d occurrence(s) skipped due to conflicts",
            pattern.pk, len(result.conflicts)
        )
    logger.info(
        "Recurring booking %s: materialized %d booking(s)",
        pattern.pk, result.created_count
    )
    return result


@transaction.atomic
def update_recurring_booking(
    pattern: RecurringBooking,
    update_data: RecurringBookingUpdateData
) -> RecurringBooking:
    """
    Update the rule of a recurring booking.

    The merged rule is validated as a whole before saving. Bookings that
    were already materialized keep their slots; later extensions follow
    the new rule.

    Args:
        pattern: RecurringBooking instance to update
        update_data: RecurringBookingUpdateData with fields to update

    Returns:
        Updated RecurringBooking instance

    Raises:
        ValueError: If the series is cancelled or completed, or the
            duration is not positive
        ValidationError: If the merged rule is invalid
    """
    if pattern.status in (RecurringBooking.Status.CANCELLED, RecurringBooking.Status.COMPLETED):
        raise ValueError(f"Cannot update a {pattern.status} recurring booking")

    if update_data.duration_minutes is not None:
        _validate_duration(update_data.duration_minutes)

    frequency_changed = (
        update_data.frequency is not None
        and update_data.frequency != pattern.frequency
    )
    moved = update_data.start_date is not None or update_data.time_zone is not None

    pattern_fields = {
        'frequency': update_data.frequency,
        'interval': update_data.interval,
        'day_of_week': update_data.day_of_week,
        'day_of_month': update_data.day_of_month,
        'start_date': update_data.start_date,
        'time_zone': update_data.time_zone,
        'duration_minutes': update_data.duration_minutes,
        'end_date': update_data.end_date,
        'occurrences': update_data.occurrences,
        'client_name': update_data.client_name,
        'client_email': update_data.client_email,
    }
    _apply_field_updates(pattern, pattern_fields)

    if frequency_changed:
        pattern.day_of_week, pattern.day_of_month = _default_day_fields(
            pattern.frequency,
            _local_start(pattern.start_date, pattern.time_zone),
            update_data.day_of_week,
            update_data.day_of_month
        )
    if moved:
        # Recomputed from the new start on save
        pattern.start_time = None

    pattern.save()
    logger.info("Updated recurring booking %s", pattern.pk)
    return pattern


def extend_recurring_booking(
    pattern: RecurringBooking,
    max_to_generate: Optional[int] = None
) -> MaterializationResult:
    """
    Materialize further occurrences of an existing series.

    Raises:
        ValueError: If the series is not active
    """
    if pattern.status != RecurringBooking.Status.ACTIVE:
        raise ValueError(f"Cannot extend a {pattern.status} recurring booking")
    return materialize_occurrences(pattern, max_to_generate)


def extend_all_active_recurring_bookings(max_to_generate: Optional[int] = None) -> int:
    """
    Extend every active series.

    Returns:
        Number of bookings created
    """
    total_created = 0
    for pattern in RecurringBooking.objects.active():
        result = materialize_occurrences(pattern, max_to_generate)
        total_created += result.created_count
    return total_created


def get_upcoming_occurrences(
    pattern: RecurringBooking,
    count: int = 5,
    from_date: Optional[datetime] = None
) -> List[datetime]:
    """Next occurrence dates of a series from now (or from_date)."""
    return upcoming_occurrences(pattern, from_date or timezone.now(), count)


@transaction.atomic
def pause_recurring_booking(pattern: RecurringBooking) -> RecurringBooking:
    """
    Pause an active series.

    Raises:
        ValueError: If the series is not active
    """
    if pattern.status != RecurringBooking.Status.ACTIVE:
        raise ValueError(f"Cannot pause a {pattern.status} recurring booking")
    return _set_series_status(pattern, RecurringBooking.Status.PAUSED)


@transaction.atomic
def resume_recurring_booking(pattern: RecurringBooking) -> RecurringBooking:
    """
    Resume a paused series.

    Raises:
        ValueError: If the series is not paused
    """
    if pattern.status != RecurringBooking.Status.PAUSED:
        raise ValueError("Only paused recurring bookings can be resumed")
    return _set_series_status(pattern, RecurringBooking.Status.ACTIVE)


@transaction.atomic
def cancel_recurring_booking(
    pattern: RecurringBooking,
    cancel_future_bookings: bool = True,
    reason: str = ''
) -> RecurringBooking:
    """
    Cancel a series; it ends now, or earlier if its end date has passed.

    Args:
        pattern: RecurringBooking to cancel
        cancel_future_bookings: Also cancel its upcoming pending/confirmed bookings
        reason: Cancellation reason stored on cancelled bookings

    Raises:
        ValueError: If the series is already cancelled
    """
    if pattern.status == RecurringBooking.Status.CANCELLED:
        raise ValueError("Recurring booking is already cancelled")

    now = timezone.now()
    ends_at = max(now, pattern.start_date)
    if pattern.end_date is not None:
        ends_at = min(pattern.end_date, ends_at)
    pattern.end_date = ends_at
    pattern.status = RecurringBooking.Status.CANCELLED
    pattern.save()

    if cancel_future_bookings:
        cancelled = Booking.objects.for_series(pattern).upcoming().update(
            status=Booking.Status.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason
        )
        logger.info("Cancelled %d upcoming booking(s) of recurring booking %s", cancelled, pattern.pk)

    return pattern


@transaction.atomic
def complete_recurring_booking(pattern: RecurringBooking) -> RecurringBooking:
    """
    Mark a series as completed.

    Raises:
        ValueError: If the series is cancelled or already completed
    """
    if pattern.status == RecurringBooking.Status.COMPLETED:
        raise ValueError("Recurring booking is already completed")
    if pattern.status == RecurringBooking.Status.CANCELLED:
        raise ValueError("Cannot complete a cancelled recurring booking")
    return _set_series_status(pattern, RecurringBooking.Status.COMPLETED)


def get_recurring_booking_stats() -> dict:
    """Counts of recurring bookings overall, active, and per status."""
    return {
        'total_recurring': RecurringBooking.objects.count(),
        'active_recurring': RecurringBooking.objects.filter(status=RecurringBooking.Status.ACTIVE).count(),
        'by_status': RecurringBooking.objects.status_counts(),
    }


def _local_start(start_date: datetime, time_zone: str) -> datetime:
    """start_date in the series' zone; unknown zones are left to model validation."""
    try:
        return timezone.localtime(start_date, ZoneInfo(time_zone))
    except (ZoneInfoNotFoundError, ValueError):
        return start_date


def _default_day_fields(frequency, local_start, day_of_week, day_of_month):
    """Keep only the day field the frequency uses, defaulting it from the start."""
    if frequency == FREQUENCY_MONTHLY:
        if day_of_month is None:
            day_of_month = local_start.day
        return None, day_of_month
    if day_of_week is None:
        day_of_week = js_weekday(local_start)
    return day_of_week, None


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)


def _set_series_status(pattern: RecurringBooking, status: str) -> RecurringBooking:
    previous = pattern.status
    pattern.status = status
    pattern.save()
    logger.info("Recurring booking %s: %s -> %s", pattern.pk, previous, status)
    return pattern


# ---------------------------------------------------------------------------
# Single bookings
# ---------------------------------------------------------------------------

def check_availability(
    staff,
    start_datetime: datetime,
    end_datetime: datetime,
    exclude_booking_id: Optional[int] = None
) -> bool:
    """
    Check whether a staff member is free for an interval.

    Args:
        staff: Staff instance or primary key
        start_datetime: Proposed start
        end_datetime: Proposed end
        exclude_booking_id: Booking to ignore (when rescheduling it)

    Raises:
        ValidationError: If end_datetime is not after start_datetime
    """
    return not _conflicts_for(staff, start_datetime, end_datetime, exclude_booking_id)


@transaction.atomic
def create_booking(
    staff_id: int,
    start_datetime: datetime,
    duration_minutes: int = 60,
    client_name: str = '',
    client_email: str = '',
    time_zone: str = 'UTC',
    status: str = Booking.Status.PENDING
) -> Booking:
    """
    Create a one-off booking after checking the slot.

    Raises:
        ValueError: If duration_minutes is not positive
        SlotUnavailableError: If the slot is taken
    """
    _validate_duration(duration_minutes)
    staff = Staff.objects.select_for_update().get(pk=staff_id)
    end_datetime = start_datetime + timedelta(minutes=duration_minutes)

    _ensure_available(staff.pk, start_datetime, end_datetime)

    booking = Booking.objects.create(
        staff=staff,
        client_name=client_name,
        client_email=client_email,
        start_datetime=start_datetime,
        end_datetime=end_datetime,
        time_zone=time_zone,
        duration_minutes=duration_minutes,
        status=status
    )
    logger.info("Created booking %s for staff %s at %s", booking.pk, staff.pk, start_datetime)
    return booking


@transaction.atomic
def reschedule_booking(
    booking: Booking,
    start_datetime: datetime,
    end_datetime: Optional[datetime] = None
) -> Booking:
    """
    Move a booking to a new slot; it becomes confirmed.

    The booking's own current slot does not count as a conflict.

    Raises:
        ValueError: If the booking is cancelled or completed
        SlotUnavailableError: If the new slot is taken
    """
    if booking.status in (Booking.Status.CANCELLED, Booking.Status.COMPLETED):
        raise ValueError(f"Cannot reschedule a {booking.status} booking")

    if end_datetime is None:
        end_datetime = start_datetime + timedelta(minutes=booking.duration_minutes)

    Staff.objects.select_for_update().get(pk=booking.staff_id)
    _ensure_available(booking.staff_id, start_datetime, end_datetime, exclude_booking_id=booking.pk)

    booking.start_datetime = start_datetime
    booking.end_datetime = end_datetime
    booking.duration_minutes = int((end_datetime - start_datetime).total_seconds() // 60)
    booking.status = Booking.Status.CONFIRMED
    booking.save()
    logger.info("Rescheduled booking %s to %s", booking.pk, start_datetime)
    return booking


@transaction.atomic
def cancel_booking(booking: Booking, reason: str = '') -> Booking:
    """
    Cancel a booking.

    Raises:
        ValueError: If booking is already cancelled
    """
    if booking.status == Booking.Status.CANCELLED:
        raise ValueError("Booking is already cancelled")

    booking.status = Booking.Status.CANCELLED
    booking.cancelled_at = timezone.now()
    booking.cancellation_reason = reason
    booking.save()
    return booking


@transaction.atomic
def confirm_booking(booking: Booking) -> Booking:
    """
    Confirm a pending booking.

    Raises:
        ValueError: If booking is not pending
    """
    if booking.status != Booking.Status.PENDING:
        raise ValueError("Only pending bookings can be confirmed")

    booking.status = Booking.Status.CONFIRMED
    booking.save()
    return booking


@transaction.atomic
def complete_booking(booking: Booking) -> Booking:
    """
    Mark a booking as completed.

    Raises:
        ValueError: If booking is already completed or cancelled
    """
    if booking.status == Booking.Status.COMPLETED:
        raise ValueError("Booking is already completed")

    if booking.status == Booking.Status.CANCELLED:
        raise ValueError("Cannot complete a cancelled booking")

    booking.status = Booking.Status.COMPLETED
    booking.save()
    return booking


@transaction.atomic
def mark_no_show(booking: Booking) -> Booking:
    """
    Mark a booking as a no-show, which frees its slot.

    Raises:
        ValueError: If booking is cancelled
    """
    if booking.status == Booking.Status.CANCELLED:
        raise ValueError("Cannot mark a cancelled booking as no-show")

    booking.status = Booking.Status.NO_SHOW
    booking.save()
    return booking


def get_bookings_in_range(
    start_datetime: datetime,
    end_datetime: datetime,
    staff_id: Optional[int] = None,
    status: Optional[str] = None,
    client_email: Optional[str] = None
) -> List[Booking]:
    """
    Get bookings starting within a datetime range.

    Raises:
        ValueError: If start_datetime >= end_datetime
    """
    if start_datetime >= end_datetime:
        raise ValueError("Start datetime must be before end datetime")

    queryset = Booking.objects.in_range(start_datetime, end_datetime)

    if staff_id:
        queryset = queryset.for_staff(staff_id)
    if status:
        queryset = queryset.filter(status=status)
    if client_email:
        queryset = queryset.for_client(client_email)

    return list(queryset)


def get_booking_stats() -> dict:
    """Counts of bookings overall and per status."""
    return {
        'total_bookings': Booking.objects.count(),
        'by_status': Booking.objects.status_counts(),
    }


def _conflicts_for(staff, start_datetime, end_datetime, exclude_booking_id=None):
    staff_id = getattr(staff, 'pk', staff)
    staff_bookings = Booking.objects.for_staff(staff_id).blocking().touching_window(
        start_datetime, end_datetime
    )
    return find_conflicts(staff_id, start_datetime, end_datetime, staff_bookings, exclude_booking_id)


def _ensure_available(staff_id, start_datetime, end_datetime, exclude_booking_id=None):
    conflicts = _conflicts_for(staff_id, start_datetime, end_datetime, exclude_booking_id)
    if conflicts:
        raise SlotUnavailableError(
            "The requested time slot is not available",
            conflicting_booking_ids=[booking.pk for booking in conflicts]
        )


def _validate_duration(duration_minutes: int) -> None:
    """Validate duration is positive."""
    if duration_minutes <= 0:
        raise ValueError("Duration must be positive")


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------

def find_bookings_needing_reminders(
    reminder_type: str,
    now: Optional[datetime] = None
) -> List[Booking]:
    """
    Get pending/confirmed bookings due for a reminder of the given type.

    A booking is due when it starts between lookahead and lookahead plus
    the tolerance window from now, and has not had this reminder yet.

    Raises:
        ValueError: If reminder_type is unknown
    """
    if reminder_type not in REMINDER_LOOKAHEAD_HOURS:
        raise ValueError(f"Invalid reminder type: {reminder_type}")

    now = now or timezone.now()
    window_start = now + timedelta(hours=REMINDER_LOOKAHEAD_HOURS[reminder_type])
    window_end = window_start + timedelta(minutes=REMINDER_WINDOW_MINUTES)

    candidates = Booking.objects.starting_between(window_start, window_end).select_related('staff')
    return [booking for booking in candidates if not booking.has_reminder(reminder_type)]


def send_booking_reminder(booking: Booking, reminder_type: str) -> bool:
    """
    Email a reminder to the client and record it on the booking.

    Returns:
        True if the reminder was sent, False if delivery failed
    """
    if not booking.client_email:
        logger.error("Booking %s has no client email; %s reminder not sent", booking.pk, reminder_type)
        return False

    local_start = timezone.localtime(booking.start_datetime, ZoneInfo(booking.time_zone))
    if reminder_type == REMINDER_24H:
        subject = f"Reminder: your appointment tomorrow at {local_start:%H:%M}"
    else:
        subject = "Your appointment is in 1 hour"
    body = (
        f"Hello {booking.client_name or 'there'},\n\n"
        f"This is a reminder of your appointment with {booking.staff.name} "
        f"on {local_start:%A %d %B %Y at %H:%M} ({booking.time_zone})."
    )

    try:
        send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            [booking.client_email],
            fail_silently=False
        )
    except Exception:
        logger.exception("Failed to send %s reminder for booking %s", reminder_type, booking.pk)
        return False

    record_reminder_sent(booking, reminder_type)
    logger.info("Sent %s reminder for booking %s to %s", reminder_type, booking.pk, booking.client_email)
    return True


def record_reminder_sent(booking: Booking, reminder_type: str) -> Booking:
    """Append a reminder entry to the booking."""
    booking.reminders_sent.append({
        'type': reminder_type,
        'sent_at': timezone.now().isoformat()
    })
    booking.save(update_fields=['reminders_sent', 'updated_at'])
    return booking


def send_due_reminders(reminder_type: str, now: Optional[datetime] = None) -> Tuple[int, int]:
    """
    Send every due reminder of a type.

    Returns:
        Tuple of (sent, failed)
    """
    sent = failed = 0
    for booking in find_bookings_needing_reminders(reminder_type, now):
        if send_booking_reminder(booking, reminder_type):
            sent += 1
        else:
            failed += 1
    logger.info("%s reminders complete: %d sent, %d failed", reminder_type, sent, failed)
    return sent, failed
