"""
Data types and constants for the booking system.

This module contains:
- Constants shared by the recurrence engine, services and API
- DTOs (Data Transfer Objects) for service layer operations
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import List, Optional

from django.conf import settings


FREQUENCY_WEEKLY = 'weekly'
FREQUENCY_BIWEEKLY = 'biweekly'
FREQUENCY_MONTHLY = 'monthly'
FREQUENCIES = (FREQUENCY_WEEKLY, FREQUENCY_BIWEEKLY, FREQUENCY_MONTHLY)

# Booking statuses that never block a slot
NON_BLOCKING_STATUSES = ('cancelled', 'no-show')
REMINDABLE_STATUSES = ('pending', 'confirmed')

DEFAULT_GENERATION_CAP = 52
MAX_UPCOMING_OCCURRENCES = 50
MAX_UPCOMING_ITERATIONS = 500

REMINDER_24H = '24h'
REMINDER_1H = '1h'
REMINDER_LOOKAHEAD_HOURS = {
    REMINDER_24H: 24,
    REMINDER_1H: 1,
}
REMINDER_WINDOW_MINUTES = 15


def get_setting(name, default):
    """Read an override from the BOOKINGS settings dict."""
    return getattr(settings, 'BOOKINGS', {}).get(name, default)


def generation_cap() -> int:
    """Configured number of occurrences materialized per batch."""
    return get_setting('GENERATION_CAP', DEFAULT_GENERATION_CAP)


@dataclass
class RecurringBookingData:
    """DTO for recurring booking creation."""
    staff_id: int
    frequency: str
    start_date: datetime
    duration_minutes: int
    client_name: str = ''
    client_email: str = ''
    interval: int = 1
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_time: Optional[time] = None
    time_zone: str = 'UTC'
    end_date: Optional[datetime] = None
    occurrences: Optional[int] = None


@dataclass
class RecurringBookingUpdateData:
    """DTO for recurring booking updates (None = unchanged)."""
    frequency: Optional[str] = None
    interval: Optional[int] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_date: Optional[datetime] = None
    time_zone: Optional[str] = None
    duration_minutes: Optional[int] = None
    end_date: Optional[datetime] = None
    occurrences: Optional[int] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None


@dataclass
class OccurrenceConflict:
    """An occurrence that could not be booked because the slot is taken."""
    start_datetime: datetime
    end_datetime: datetime
    conflicting_booking_ids: List[int]


@dataclass
class MaterializationResult:
    """Outcome of turning generated occurrence dates into bookings."""
    created: list = field(default_factory=list)
    conflicts: List[OccurrenceConflict] = field(default_factory=list)
    exhausted: bool = False

    @property
    def created_count(self) -> int:
        return len(self.created)
