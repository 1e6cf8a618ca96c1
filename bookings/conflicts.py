"""
Slot conflict detection.

Decides whether a proposed interval on a staff member's calendar collides
with bookings the caller already loaded for that staff member. Pure: the
caller scopes and fetches the bookings.

The check is not atomic with booking creation. Callers that go on to
insert a booking must hold a lock on the staff row (see
services.materialize_occurrences) or re-check at insert time.
"""

from datetime import datetime
from typing import Iterable, List

from django.core.exceptions import ValidationError

from .types import NON_BLOCKING_STATUSES


def find_conflicts(
    resource_id,
    proposed_start: datetime,
    proposed_end: datetime,
    existing_bookings: Iterable,
    exclude_booking_id=None
) -> List:
    """
    Bookings that block the proposed interval.

    Args:
        resource_id: staff id the interval is proposed for
        proposed_start: interval start
        proposed_end: interval end, after proposed_start
        existing_bookings: bookings with pk, status, start_datetime and
            end_datetime (staff_id is honoured when present)
        exclude_booking_id: booking to ignore, e.g. the one being rescheduled

    Returns:
        List of conflicting bookings, in input order

    Raises:
        ValidationError: if proposed_end is not after proposed_start
    """
    if proposed_end <= proposed_start:
        raise ValidationError('Proposed end must be after proposed start.')

    conflicts = []
    for booking in existing_bookings:
        if booking.status in NON_BLOCKING_STATUSES:
            continue
        if exclude_booking_id is not None and booking.pk == exclude_booking_id:
            continue
        staff_id = getattr(booking, 'staff_id', None)
        if staff_id is not None and resource_id is not None and staff_id != resource_id:
            continue

        if _blocks(booking.start_datetime, booking.end_datetime, proposed_start, proposed_end):
            conflicts.append(booking)

    return conflicts


def is_available(
    resource_id,
    proposed_start: datetime,
    proposed_end: datetime,
    existing_bookings: Iterable,
    exclude_booking_id=None
) -> bool:
    """True when no existing booking blocks the proposed interval."""
    return not find_conflicts(
        resource_id,
        proposed_start,
        proposed_end,
        existing_bookings,
        exclude_booking_id,
    )


def _blocks(
    existing_start: datetime,
    existing_end: datetime,
    proposed_start: datetime,
    proposed_end: datetime
) -> bool:
    # Proposed start falls inside the existing booking
    if existing_start <= proposed_start and existing_end > proposed_start:
        return True
    # Proposed end falls inside the existing booking
    if existing_start < proposed_end and existing_end >= proposed_end:
        return True
    # Existing booking sits within the proposed interval
    return existing_start >= proposed_start and existing_end <= proposed_end
