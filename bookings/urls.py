"""
URL routing for the bookings API.
"""

from django.urls import path, re_path
from .views import (
    AvailabilityView,
    BookingDetailView,
    BookingListCreateView,
    BookingStatsView,
    RecurringBookingDetailView,
    RecurringBookingExtendView,
    RecurringBookingListCreateView,
    RecurringBookingStatsView,
    RecurringBookingStatusView,
    RecurringBookingUpcomingView,
)

urlpatterns = [
    path('recurring-bookings/', RecurringBookingListCreateView.as_view(), name='recurring-booking-list-create'),
    path('recurring-bookings/stats/', RecurringBookingStatsView.as_view(), name='recurring-booking-stats'),
    path('recurring-bookings/<int:pk>/', RecurringBookingDetailView.as_view(), name='recurring-booking-detail'),
    path('recurring-bookings/<int:pk>/extend/', RecurringBookingExtendView.as_view(), name='recurring-booking-extend'),
    path('recurring-bookings/<int:pk>/upcoming/', RecurringBookingUpcomingView.as_view(), name='recurring-booking-upcoming'),
    re_path(
        r'^recurring-bookings/(?P<pk>[0-9]+)/(?P<action>pause|resume|cancel|complete)/$',
        RecurringBookingStatusView.as_view(),
        name='recurring-booking-status'
    ),
    path('bookings/', BookingListCreateView.as_view(), name='booking-list-create'),
    path('bookings/stats/', BookingStatsView.as_view(), name='booking-stats'),
    path('bookings/<int:pk>/', BookingDetailView.as_view(), name='booking-detail'),
    path('availability/', AvailabilityView.as_view(), name='availability'),
]
