"""
Serializers for the booking system.
"""

from rest_framework import serializers

from .models import Booking, RecurringBooking, validate_time_zone
from .types import FREQUENCIES, MAX_UPCOMING_OCCURRENCES


class RecurringBookingReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying RecurringBooking (output)."""

    staff_name = serializers.CharField(source='staff.name', read_only=True)
    remaining_occurrences = serializers.ReadOnlyField()

    class Meta:
        model = RecurringBooking
        fields = [
            'id',
            'staff',
            'staff_name',
            'client_name',
            'client_email',
            'frequency',
            'interval',
            'day_of_week',
            'day_of_month',
            'start_time',
            'start_date',
            'time_zone',
            'duration_minutes',
            'end_date',
            'occurrences',
            'remaining_occurrences',
            'status',
            'generated_booking_ids',
            'created_at',
            'updated_at',
        ]


class RecurringBookingCreateSerializer(serializers.Serializer):
    """Serializer for creating a recurring booking with options."""

    staff = serializers.IntegerField(min_value=1)
    client_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    client_email = serializers.EmailField(required=False, allow_blank=True, default='')
    frequency = serializers.ChoiceField(choices=FREQUENCIES)
    interval = serializers.IntegerField(min_value=1, default=1)
    day_of_week = serializers.IntegerField(min_value=0, max_value=6, required=False, allow_null=True)
    day_of_month = serializers.IntegerField(min_value=1, max_value=31, required=False, allow_null=True)
    start_date = serializers.DateTimeField()
    time_zone = serializers.CharField(max_length=64, default='UTC', validators=[validate_time_zone])
    duration_minutes = serializers.IntegerField(min_value=1, default=60)
    end_date = serializers.DateTimeField(required=False, allow_null=True)
    occurrences = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    generate_bookings = serializers.BooleanField(default=True)
    max_to_generate = serializers.IntegerField(min_value=1, max_value=366, required=False)

    def validate(self, data):
        """Validate creation data."""
        start_date = data.get('start_date')
        end_date = data.get('end_date')

        if end_date and end_date < start_date:
            raise serializers.ValidationError({
                'end_date': 'End date must not be before start date.'
            })

        if data['frequency'] == 'monthly' and data.get('day_of_week') is not None:
            raise serializers.ValidationError({
                'day_of_week': 'Day of week is only used by weekly bookings.'
            })

        if data['frequency'] != 'monthly' and data.get('day_of_month') is not None:
            raise serializers.ValidationError({
                'day_of_month': 'Day of month is only used by monthly bookings.'
            })

        return data


class RecurringBookingUpdateSerializer(serializers.Serializer):
    """Serializer for partial updates of a recurring booking's rule."""

    client_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    client_email = serializers.EmailField(required=False, allow_blank=True)
    frequency = serializers.ChoiceField(choices=FREQUENCIES, required=False)
    interval = serializers.IntegerField(min_value=1, required=False)
    day_of_week = serializers.IntegerField(min_value=0, max_value=6, required=False)
    day_of_month = serializers.IntegerField(min_value=1, max_value=31, required=False)
    start_date = serializers.DateTimeField(required=False)
    time_zone = serializers.CharField(max_length=64, required=False, validators=[validate_time_zone])
    duration_minutes = serializers.IntegerField(min_value=1, required=False)
    end_date = serializers.DateTimeField(required=False)
    occurrences = serializers.IntegerField(min_value=1, required=False)

    def validate(self, data):
        """Require at least one field and check the fields agree."""
        if not data:
            raise serializers.ValidationError("No valid fields provided for update.")

        start_date = data.get('start_date')
        end_date = data.get('end_date')
        if start_date and end_date and end_date < start_date:
            raise serializers.ValidationError({
                'end_date': 'End date must not be before start date.'
            })

        frequency = data.get('frequency')
        if frequency == 'monthly' and 'day_of_week' in data:
            raise serializers.ValidationError({
                'day_of_week': 'Day of week is only used by weekly bookings.'
            })
        if frequency and frequency != 'monthly' and 'day_of_month' in data:
            raise serializers.ValidationError({
                'day_of_month': 'Day of month is only used by monthly bookings.'
            })

        return data


class ExtendSerializer(serializers.Serializer):
    """Serializer for extending a recurring booking."""

    max_to_generate = serializers.IntegerField(min_value=1, max_value=366, required=False)


class UpcomingQuerySerializer(serializers.Serializer):
    """Serializer for upcoming occurrence query parameters."""

    count = serializers.IntegerField(min_value=1, max_value=MAX_UPCOMING_OCCURRENCES, default=5)
    from_date = serializers.DateTimeField(required=False)


class OccurrenceConflictSerializer(serializers.Serializer):
    """Serializer for occurrences skipped because their slot was taken."""

    start_datetime = serializers.DateTimeField()
    end_datetime = serializers.DateTimeField()
    conflicting_booking_ids = serializers.ListField(child=serializers.IntegerField())


class BookingReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Booking (output)."""

    is_recurring = serializers.BooleanField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id',
            'staff',
            'recurring_booking',
            'client_name',
            'client_email',
            'start_datetime',
            'end_datetime',
            'occurrence_datetime',
            'time_zone',
            'duration_minutes',
            'status',
            'is_recurring',
            'cancellation_reason',
            'cancelled_at',
            'reminders_sent',
            'created_at',
            'updated_at',
        ]


class BookingCreateSerializer(serializers.Serializer):
    """Serializer for creating a one-off booking."""

    staff = serializers.IntegerField(min_value=1)
    client_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    client_email = serializers.EmailField(required=False, allow_blank=True, default='')
    start_datetime = serializers.DateTimeField()
    duration_minutes = serializers.IntegerField(min_value=1, default=60)
    time_zone = serializers.CharField(max_length=64, default='UTC', validators=[validate_time_zone])


class BookingRescheduleSerializer(serializers.Serializer):
    """Serializer for moving a booking to a new slot."""

    start_datetime = serializers.DateTimeField()
    end_datetime = serializers.DateTimeField(required=False)

    def validate(self, data):
        """Ensure the new slot ends after it starts."""
        end = data.get('end_datetime')
        if end is not None and end <= data['start_datetime']:
            raise serializers.ValidationError({
                'end_datetime': 'End must be after start.'
            })
        return data


class BookingCancelSerializer(serializers.Serializer):
    """Serializer for cancellation details."""

    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DateRangeQuerySerializer(serializers.Serializer):
    """Serializer for date range query parameters."""

    start = serializers.DateTimeField(required=True)
    end = serializers.DateTimeField(required=True)
    staff = serializers.IntegerField(min_value=1, required=False)
    client_email = serializers.EmailField(required=False)
    status = serializers.ChoiceField(
        choices=Booking.Status.choices,
        required=False,
        allow_null=True
    )

    def validate(self, data):
        """Ensure start is before end."""
        if data['start'] >= data['end']:
            raise serializers.ValidationError(
                "Start datetime must be before end datetime."
            )
        return data


class AvailabilityQuerySerializer(serializers.Serializer):
    """Serializer for availability query parameters."""

    staff = serializers.IntegerField(min_value=1)
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
    exclude = serializers.IntegerField(min_value=1, required=False)

    def validate(self, data):
        """Ensure start is before end."""
        if data['start'] >= data['end']:
            raise serializers.ValidationError(
                "Start datetime must be before end datetime."
            )
        return data
