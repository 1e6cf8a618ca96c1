"""
Custom managers and querysets for booking models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from django.db import models
from django.db.models import Count
from django.utils import timezone

from .types import NON_BLOCKING_STATUSES, REMINDABLE_STATUSES


class StaffQuerySet(models.QuerySet):
    """Custom queryset for Staff model."""

    def active(self):
        """Get staff members who accept bookings."""
        return self.filter(is_active=True)


class StaffManager(models.Manager):
    """Custom manager for Staff model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return StaffQuerySet(self.model, using=self._db)

    def active(self):
        """Get staff members who accept bookings."""
        return self.get_queryset().active()


class BookingQuerySet(models.QuerySet):
    """Custom queryset for Booking model with chainable methods."""

    def for_staff(self, staff):
        """
        Get bookings on a staff member's calendar.

        Args:
            staff: Staff instance or primary key
        """
        return self.filter(staff=staff)

    def blocking(self):
        """Get bookings that occupy their slot (not cancelled/no-show)."""
        return self.exclude(status__in=NON_BLOCKING_STATUSES)

    def touching_window(self, start_datetime, end_datetime):
        """
        Get bookings that intersect or touch a datetime window.

        Used to pre-filter candidates for the conflict detector, which
        makes the final decision.

        Args:
            start_datetime: window start
            end_datetime: window end
        """
        return self.filter(
            start_datetime__lte=end_datetime,
            end_datetime__gte=start_datetime
        )

    def in_range(self, start_datetime, end_datetime):
        """Get bookings starting within a datetime range."""
        return self.filter(
            start_datetime__gte=start_datetime,
            start_datetime__lte=end_datetime
        )

    def upcoming(self):
        """Get future bookings that are still expected to happen."""
        return self.filter(
            status__in=REMINDABLE_STATUSES,
            start_datetime__gte=timezone.now()
        )

    def for_series(self, recurring_booking):
        """Get bookings materialized from a recurring booking."""
        return self.filter(recurring_booking=recurring_booking)

    def starting_between(self, window_start, window_end):
        """Get remindable bookings starting inside a window (inclusive)."""
        return self.filter(
            status__in=REMINDABLE_STATUSES,
            start_datetime__gte=window_start,
            start_datetime__lte=window_end
        )

    def for_client(self, client_email):
        """Get bookings made by a client (case-insensitive email)."""
        return self.filter(client_email__iexact=client_email)

    def status_counts(self):
        """Map each status to its number of bookings."""
        rows = self.order_by().values('status').annotate(count=Count('id'))
        return {row['status']: row['count'] for row in rows}


class BookingManager(models.Manager):
    """Custom manager for Booking model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return BookingQuerySet(self.model, using=self._db)

    def for_staff(self, staff):
        """Get bookings on a staff member's calendar."""
        return self.get_queryset().for_staff(staff)

    def in_range(self, start_datetime, end_datetime):
        """Get bookings starting within a datetime range."""
        return self.get_queryset().in_range(start_datetime, end_datetime)

    def for_series(self, recurring_booking):
        """Get bookings materialized from a recurring booking."""
        return self.get_queryset().for_series(recurring_booking)

    def starting_between(self, window_start, window_end):
        """Get remindable bookings starting inside a window."""
        return self.get_queryset().starting_between(window_start, window_end)

    def status_counts(self):
        """Map each status to its number of bookings."""
        return self.get_queryset().status_counts()


class RecurringBookingQuerySet(models.QuerySet):
    """Custom queryset for RecurringBooking model with chainable methods."""

    def active(self):
        """Get active recurring bookings that have not passed their end date."""
        return self.filter(status='active').filter(
            models.Q(end_date__isnull=True) | models.Q(end_date__gte=timezone.now())
        )

    def for_staff(self, staff):
        """Get recurring bookings on a staff member's calendar."""
        return self.filter(staff=staff)

    def for_client(self, client_email):
        """Get recurring bookings booked by a client (case-insensitive email)."""
        return self.filter(client_email__iexact=client_email)

    def status_counts(self):
        """Map each status to its number of recurring bookings."""
        rows = self.order_by().values('status').annotate(count=Count('id'))
        return {row['status']: row['count'] for row in rows}


class RecurringBookingManager(models.Manager):
    """Custom manager for RecurringBooking model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return RecurringBookingQuerySet(self.model, using=self._db)

    def active(self):
        """Get active recurring bookings that have not passed their end date."""
        return self.get_queryset().active()

    def for_staff(self, staff):
        """Get recurring bookings on a staff member's calendar."""
        return self.get_queryset().for_staff(staff)

    def status_counts(self):
        """Map each status to its number of recurring bookings."""
        return self.get_queryset().status_counts()
