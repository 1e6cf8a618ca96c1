"""
DRF exception handling for the bookings API.

Services raise Django ValidationError for invalid rules and ValueError for
invalid state transitions; both become 400 responses. Taken slots become
409 responses carrying the ids of the blocking bookings.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .services import SlotUnavailableError

logger = logging.getLogger(__name__)


def booking_exception_handler(exc, context):
    """Translate domain errors into API responses."""
    response = exception_handler(exc, context)
    if response is not None:
        return response

    view_name = context['view'].__class__.__name__ if context.get('view') else 'unknown view'

    if isinstance(exc, SlotUnavailableError):
        logger.info("%s: slot unavailable (%s)", view_name, exc.conflicting_booking_ids)
        return Response({
            'detail': str(exc),
            'conflicting_booking_ids': exc.conflicting_booking_ids
        }, status=status.HTTP_409_CONFLICT)

    if isinstance(exc, DjangoValidationError):
        logger.info("%s: validation failed: %s", view_name, exc.messages)
        if hasattr(exc, 'error_dict'):
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response({'detail': exc.messages}, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, ValueError):
        logger.info("%s: rejected: %s", view_name, exc)
        return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)

    return None
