"""
Models for the booking system.

This implementation uses the Occurrence Materialization Pattern where:
- RecurringBooking stores the recurrence rule of a series of appointments
- Booking stores ALL actual appointments (both one-off and materialized from a series)
- Staff is the resource whose calendar is checked for conflicts
"""

from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.db import models
from django.core.exceptions import ValidationError
from django.utils import timezone

from .managers import BookingManager, RecurringBookingManager, StaffManager
from .recurrence import days_in_month, js_weekday
from .types import FREQUENCY_BIWEEKLY, FREQUENCY_MONTHLY, FREQUENCY_WEEKLY


WEEKDAY_CHOICES = [
    (0, 'Sunday'),
    (1, 'Monday'),
    (2, 'Tuesday'),
    (3, 'Wednesday'),
    (4, 'Thursday'),
    (5, 'Friday'),
    (6, 'Saturday'),
]


def validate_time_zone(name):
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f'Unknown time zone: {name}')


class Staff(models.Model):
    """A provider who can be booked. Conflicts are checked per staff member."""

    name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    time_zone = models.CharField(
        max_length=64,
        default='UTC',
        validators=[validate_time_zone]
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = StaffManager()

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'staff'

    def __str__(self):
        return self.name


class RecurringBooking(models.Model):
    """
    Recurrence rule for a series of appointments with one staff member.

    Occurrence dates are computed by bookings.recurrence; concrete
    appointments are stored as Booking rows whose ids are appended to
    generated_booking_ids as they are materialized.
    """

    class Frequency(models.TextChoices):
        WEEKLY = FREQUENCY_WEEKLY, 'Weekly'
        BIWEEKLY = FREQUENCY_BIWEEKLY, 'Biweekly'
        MONTHLY = FREQUENCY_MONTHLY, 'Monthly'

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        PAUSED = 'paused', 'Paused'
        CANCELLED = 'cancelled', 'Cancelled'
        COMPLETED = 'completed', 'Completed'

    staff = models.ForeignKey(
        Staff,
        on_delete=models.PROTECT,
        related_name='recurring_bookings'
    )
    client_name = models.CharField(max_length=200, blank=True, default='')
    client_email = models.EmailField(blank=True, default='')

    frequency = models.CharField(max_length=20, choices=Frequency.choices)
    interval = models.PositiveIntegerField(
        default=1,
        help_text="Every N weeks/months (ignored as a multiplier for biweekly)"
    )
    day_of_week = models.PositiveSmallIntegerField(
        choices=WEEKDAY_CHOICES,
        null=True,
        blank=True,
        help_text="Weekly/biweekly only (0=Sunday, 6=Saturday)"
    )
    day_of_month = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text="Monthly only (1-31, clamped to the month's last day)"
    )

    start_time = models.TimeField(
        null=True,
        blank=True,
        help_text="Wall-clock time of day in time_zone"
    )
    start_date = models.DateTimeField(
        help_text="First occurrence; anchors the cadence and time of day"
    )
    time_zone = models.CharField(
        max_length=64,
        default='UTC',
        validators=[validate_time_zone]
    )
    duration_minutes = models.PositiveIntegerField(default=60)

    end_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="No occurrence may start after this (null = no end date)"
    )
    occurrences = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum number of bookings to materialize (null = unlimited)"
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE
    )
    generated_booking_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Ids of bookings materialized from this series, in order"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RecurringBookingManager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'staff'], name='bookings_re_status_7c1f0e_idx'),
            models.Index(fields=['start_date', 'end_date'], name='bookings_re_start_d_2b9a41_idx'),
        ]

    def __str__(self):
        return f"{self.get_frequency_display()} with {self.staff} from {self.start_date:%Y-%m-%d %H:%M}"

    @property
    def local_start(self):
        """start_date rendered in the series' time zone."""
        return timezone.localtime(self.start_date, ZoneInfo(self.time_zone))

    @property
    def remaining_occurrences(self):
        """Bookings still allowed by the occurrence cap (None = unlimited)."""
        if self.occurrences is None:
            return None
        return max(0, self.occurrences - len(self.generated_booking_ids))

    def clean(self):
        """Validate that the rule fields agree with the frequency."""
        super().clean()

        errors = {}
        weekly = self.frequency in (self.Frequency.WEEKLY, self.Frequency.BIWEEKLY)

        # An unknown time_zone is reported by its field validator
        try:
            local_start = self.local_start if self.start_date else None
        except (ZoneInfoNotFoundError, ValueError):
            local_start = None

        if weekly:
            if self.day_of_week is None:
                errors['day_of_week'] = 'Day of week is required for weekly and biweekly bookings.'
            elif local_start and js_weekday(local_start) != self.day_of_week:
                errors['start_date'] = 'Start date must fall on the selected day of week.'
            if self.day_of_month is not None:
                errors['day_of_month'] = 'Day of month is only used by monthly bookings.'

        if self.frequency == self.Frequency.MONTHLY:
            if self.day_of_month is None:
                errors['day_of_month'] = 'Day of month is required for monthly bookings.'
            elif not 1 <= self.day_of_month <= 31:
                errors['day_of_month'] = 'Day of month must be between 1 and 31.'
            elif local_start and local_start.day != min(
                self.day_of_month,
                days_in_month(local_start.year, local_start.month)
            ):
                errors['start_date'] = 'Start date must fall on the selected day of month.'
            if self.day_of_week is not None:
                errors['day_of_week'] = 'Day of week is only used by weekly bookings.'

        if self.interval is not None and self.interval < 1:
            errors['interval'] = 'Interval must be at least 1.'

        if self.end_date and self.start_date and self.end_date < self.start_date:
            errors['end_date'] = 'End date must not be before start date.'

        if self.occurrences is not None and len(self.generated_booking_ids) > self.occurrences:
            errors['generated_booking_ids'] = 'More bookings generated than occurrences allow.'

        if errors:
            raise ValidationError(errors)

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        if self.start_time is None:
            self.start_time = self.local_start.time()
        super().save(*args, **kwargs)


class Booking(models.Model):
    """
    A single appointment with a staff member.

    One-off bookings: recurring_booking = null
    Series bookings: reference the RecurringBooking they were materialized from
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        COMPLETED = 'completed', 'Completed'
        CANCELLED = 'cancelled', 'Cancelled'
        NO_SHOW = 'no-show', 'No-show'
        RESCHEDULED = 'rescheduled', 'Rescheduled'

    staff = models.ForeignKey(
        Staff,
        on_delete=models.PROTECT,
        related_name='bookings'
    )
    recurring_booking = models.ForeignKey(
        RecurringBooking,
        on_delete=models.SET_NULL,
        related_name='bookings',
        null=True,
        blank=True,
        help_text="Series this booking was materialized from (null for one-off bookings)"
    )
    client_name = models.CharField(max_length=200, blank=True, default='')
    client_email = models.EmailField(blank=True, default='')

    start_datetime = models.DateTimeField()
    end_datetime = models.DateTimeField()
    occurrence_datetime = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Series occurrence this booking was materialized for; unchanged by rescheduling"
    )
    time_zone = models.CharField(
        max_length=64,
        default='UTC',
        validators=[validate_time_zone]
    )
    duration_minutes = models.PositiveIntegerField(default=60)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )
    cancellation_reason = models.TextField(blank=True, default='')
    cancelled_at = models.DateTimeField(null=True, blank=True)

    reminders_sent = models.JSONField(default=list, blank=True)
    internal_notes = models.TextField(blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BookingManager()

    class Meta:
        ordering = ['start_datetime']
        indexes = [
            models.Index(fields=['staff', 'start_datetime'], name='bookings_bo_staff_i_5d0c3a_idx'),
            models.Index(fields=['start_datetime', 'status'], name='bookings_bo_start_d_8e6b27_idx'),
            models.Index(fields=['recurring_booking', 'start_datetime'], name='bookings_bo_recurri_a41f96_idx'),
        ]

    def __str__(self):
        status_str = f" [{self.status}]" if self.status != self.Status.CONFIRMED else ""
        return f"{self.staff} - {self.start_datetime:%Y-%m-%d %H:%M}{status_str}"

    @property
    def is_recurring(self):
        """Check if this booking belongs to a series."""
        return self.recurring_booking_id is not None

    def has_reminder(self, reminder_type):
        """Check whether a reminder of this type was already sent."""
        return any(entry.get('type') == reminder_type for entry in self.reminders_sent)

    def clean(self):
        """Validate booking data."""
        super().clean()

        if self.start_datetime and self.end_datetime and self.end_datetime <= self.start_datetime:
            raise ValidationError({
                'end_datetime': 'End must be after start.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        if self.start_datetime and not self.end_datetime:
            self.end_datetime = self.start_datetime + timedelta(minutes=self.duration_minutes)
        self.full_clean()
        super().save(*args, **kwargs)
