"""Views for the booking system."""

from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Booking, RecurringBooking, Staff
from .serializers import (
    AvailabilityQuerySerializer,
    BookingCancelSerializer,
    BookingCreateSerializer,
    BookingReadSerializer,
    BookingRescheduleSerializer,
    DateRangeQuerySerializer,
    ExtendSerializer,
    OccurrenceConflictSerializer,
    RecurringBookingCreateSerializer,
    RecurringBookingReadSerializer,
    RecurringBookingUpdateSerializer,
    UpcomingQuerySerializer,
)
from . import services
from .types import RecurringBookingData, RecurringBookingUpdateData


def _materialization_payload(result):
    return {
        'bookings_created': result.created_count,
        'bookings': BookingReadSerializer(result.created, many=True).data,
        'conflicts': OccurrenceConflictSerializer(result.conflicts, many=True).data,
        'exhausted': result.exhausted,
    }


class RecurringBookingListCreateView(APIView):
    """
    List all recurring bookings or create a new one.

    GET /api/recurring-bookings/ - List recurring bookings (?staff=, ?status=, ?client_email=)
    POST /api/recurring-bookings/ - Create a recurring booking
    """

    def get(self, request):
        """List recurring bookings."""
        patterns = RecurringBooking.objects.select_related('staff')

        staff_id = request.query_params.get('staff')
        if staff_id:
            patterns = patterns.for_staff(staff_id)
        status_filter = request.query_params.get('status')
        if status_filter:
            patterns = patterns.filter(status=status_filter)
        client_email = request.query_params.get('client_email')
        if client_email:
            patterns = patterns.for_client(client_email)

        serializer = RecurringBookingReadSerializer(patterns, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create a recurring booking and materialize its first occurrences."""
        serializer = RecurringBookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        staff = get_object_or_404(Staff.objects.active(), pk=data['staff'])

        pattern, result = services.create_recurring_booking(
            RecurringBookingData(
                staff_id=staff.pk,
                frequency=data['frequency'],
                start_date=data['start_date'],
                duration_minutes=data['duration_minutes'],
                client_name=data['client_name'],
                client_email=data['client_email'],
                interval=data['interval'],
                day_of_week=data.get('day_of_week'),
                day_of_month=data.get('day_of_month'),
                time_zone=data['time_zone'],
                end_date=data.get('end_date'),
                occurrences=data.get('occurrences'),
            ),
            max_to_generate=data.get('max_to_generate'),
            materialize=data['generate_bookings']
        )

        return Response({
            'recurring_booking': RecurringBookingReadSerializer(pattern).data,
            **_materialization_payload(result)
        }, status=status.HTTP_201_CREATED)


class RecurringBookingDetailView(APIView):
    """
    Retrieve or update a recurring booking.

    GET /api/recurring-bookings/{id}/ - Retrieve recurring booking
    PATCH /api/recurring-bookings/{id}/ - Update its rule
    """

    def get(self, request, pk):
        """Retrieve a recurring booking."""
        pattern = get_object_or_404(RecurringBooking, pk=pk)
        serializer = RecurringBookingReadSerializer(pattern)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Update a recurring booking's rule."""
        pattern = get_object_or_404(RecurringBooking, pk=pk)
        serializer = RecurringBookingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        updated = services.update_recurring_booking(
            pattern,
            RecurringBookingUpdateData(**serializer.validated_data)
        )
        return Response(RecurringBookingReadSerializer(updated).data)


class RecurringBookingStatsView(APIView):
    """
    Summary counts of recurring bookings.

    GET /api/recurring-bookings/stats/
    """

    def get(self, request):
        """Return recurring booking counts."""
        return Response(services.get_recurring_booking_stats())


class RecurringBookingStatusView(APIView):
    """
    Change the status of a recurring booking.

    POST /api/recurring-bookings/{id}/pause/
    POST /api/recurring-bookings/{id}/resume/
    POST /api/recurring-bookings/{id}/cancel/
    POST /api/recurring-bookings/{id}/complete/
    """

    transitions = {
        'pause': services.pause_recurring_booking,
        'resume': services.resume_recurring_booking,
        'cancel': services.cancel_recurring_booking,
        'complete': services.complete_recurring_booking,
    }

    def post(self, request, pk, action):
        """Apply a status transition."""
        pattern = get_object_or_404(RecurringBooking, pk=pk)
        updated = self.transitions[action](pattern)
        return Response(RecurringBookingReadSerializer(updated).data)


class RecurringBookingExtendView(APIView):
    """
    Materialize further occurrences of a recurring booking.

    POST /api/recurring-bookings/{id}/extend/
    """

    def post(self, request, pk):
        """Extend the series."""
        pattern = get_object_or_404(RecurringBooking, pk=pk)
        serializer = ExtendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = services.extend_recurring_booking(
            pattern,
            serializer.validated_data.get('max_to_generate')
        )
        return Response(_materialization_payload(result))


class RecurringBookingUpcomingView(APIView):
    """
    Preview the next occurrence dates of a recurring booking.

    GET /api/recurring-bookings/{id}/upcoming/?count=N&from_date=X
    """

    def get(self, request, pk):
        """List upcoming occurrence dates."""
        pattern = get_object_or_404(RecurringBooking, pk=pk)
        serializer = UpcomingQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        dates = services.get_upcoming_occurrences(
            pattern,
            count=serializer.validated_data['count'],
            from_date=serializer.validated_data.get('from_date')
        )
        return Response({'occurrences': [d.isoformat() for d in dates]})


class BookingListCreateView(APIView):
    """
    List bookings within a date range or create a one-off booking.

    GET /api/bookings/?start=X&end=Y - List bookings in range (?staff=, ?status=, ?client_email=)
    POST /api/bookings/ - Create a one-off booking
    """

    def get(self, request):
        """List bookings within a date range."""
        query_serializer = DateRangeQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        bookings = services.get_bookings_in_range(
            query_serializer.validated_data['start'],
            query_serializer.validated_data['end'],
            staff_id=query_serializer.validated_data.get('staff'),
            status=query_serializer.validated_data.get('status'),
            client_email=query_serializer.validated_data.get('client_email')
        )

        serializer = BookingReadSerializer(bookings, many=True)
        return Response(serializer.data)

    def post(self, request):
        """Create a one-off booking."""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        staff = get_object_or_404(Staff.objects.active(), pk=data['staff'])

        booking = services.create_booking(
            staff_id=staff.pk,
            start_datetime=data['start_datetime'],
            duration_minutes=data['duration_minutes'],
            client_name=data['client_name'],
            client_email=data['client_email'],
            time_zone=data['time_zone']
        )

        response_serializer = BookingReadSerializer(booking)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class BookingDetailView(APIView):
    """
    Retrieve, reschedule, or cancel a booking.

    GET /api/bookings/{id}/ - Retrieve booking
    PATCH /api/bookings/{id}/ - Reschedule booking
    DELETE /api/bookings/{id}/ - Cancel booking
    """

    def get(self, request, pk):
        """Retrieve a booking."""
        booking = get_object_or_404(Booking, pk=pk)
        serializer = BookingReadSerializer(booking)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Reschedule a booking."""
        booking = get_object_or_404(Booking, pk=pk)
        serializer = BookingRescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        updated_booking = services.reschedule_booking(
            booking,
            serializer.validated_data['start_datetime'],
            serializer.validated_data.get('end_datetime')
        )

        response_serializer = BookingReadSerializer(updated_booking)
        return Response(response_serializer.data)

    def delete(self, request, pk):
        """Cancel a booking."""
        booking = get_object_or_404(Booking, pk=pk)
        serializer = BookingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        services.cancel_booking(booking, reason=serializer.validated_data['reason'])

        return Response({
            'message': f'Booking on {booking.start_datetime.date()} has been cancelled.'
        }, status=status.HTTP_200_OK)


class BookingStatsView(APIView):
    """
    Summary counts of bookings.

    GET /api/bookings/stats/
    """

    def get(self, request):
        """Return booking counts."""
        return Response(services.get_booking_stats())


class AvailabilityView(APIView):
    """
    Check whether a staff member is free for an interval.

    GET /api/availability/?staff=ID&start=X&end=Y[&exclude=BOOKING_ID]
    """

    def get(self, request):
        """Check availability."""
        serializer = AvailabilityQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        staff = get_object_or_404(Staff, pk=data['staff'])
        available = services.check_availability(
            staff,
            data['start'],
            data['end'],
            exclude_booking_id=data.get('exclude')
        )
        return Response({'available': available})
