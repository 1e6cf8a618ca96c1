"""
Admin configuration for the bookings app.
"""

from django.contrib import admin
from .models import Booking, RecurringBooking, Staff


@admin.register(Staff)
class StaffAdmin(admin.ModelAdmin):
    """Admin interface for Staff model."""

    list_display = ['name', 'email', 'time_zone', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'email']


@admin.register(RecurringBooking)
class RecurringBookingAdmin(admin.ModelAdmin):
    """Admin interface for RecurringBooking model."""

    list_display = ['staff', 'client_email', 'frequency', 'interval', 'start_date', 'end_date', 'occurrences', 'status']
    list_filter = ['status', 'frequency', 'staff', 'created_at']
    search_fields = ['client_name', 'client_email', 'staff__name']
    date_hierarchy = 'start_date'

    fieldsets = (
        ('Participants', {
            'fields': ('staff', 'client_name', 'client_email', 'status')
        }),
        ('Recurrence Rules', {
            'fields': ('frequency', 'interval', 'day_of_week', 'day_of_month', 'duration_minutes')
        }),
        ('Series Boundaries', {
            'fields': ('start_date', 'start_time', 'time_zone', 'end_date', 'occurrences')
        }),
        ('Materialized Bookings', {
            'fields': ('generated_booking_ids',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['generated_booking_ids', 'created_at', 'updated_at']


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Admin interface for Booking model."""

    list_display = ['staff', 'client_email', 'start_datetime', 'end_datetime', 'status', 'recurring_booking']
    list_filter = ['status', 'staff', 'created_at']
    search_fields = ['client_name', 'client_email', 'staff__name']
    date_hierarchy = 'start_datetime'

    fieldsets = (
        ('Participants', {
            'fields': ('staff', 'client_name', 'client_email', 'recurring_booking')
        }),
        ('Schedule', {
            'fields': ('start_datetime', 'end_datetime', 'occurrence_datetime', 'time_zone', 'duration_minutes')
        }),
        ('Status', {
            'fields': ('status', 'cancellation_reason', 'cancelled_at', 'reminders_sent')
        }),
        ('Notes', {
            'fields': ('internal_notes',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['occurrence_datetime', 'reminders_sent', 'created_at', 'updated_at']
