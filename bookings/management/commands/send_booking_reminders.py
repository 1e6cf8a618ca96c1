"""
Management command to email booking reminders.

Schedule it with cron: hourly for 24h reminders and every 15 minutes for
1h reminders, matching the reminder window.
"""

from django.core.management.base import BaseCommand, CommandError
from bookings import services
from bookings.types import REMINDER_LOOKAHEAD_HOURS


class Command(BaseCommand):
    help = 'Send reminder emails for bookings starting soon'

    def add_arguments(self, parser):
        parser.add_argument(
            '--type',
            dest='reminder_type',
            choices=sorted(REMINDER_LOOKAHEAD_HOURS),
            action='append',
            help='Reminder type to send (repeatable; default: all)'
        )

    def handle(self, *args, **options):
        reminder_types = options['reminder_type'] or sorted(REMINDER_LOOKAHEAD_HOURS)
        failures = 0

        for reminder_type in reminder_types:
            self.stdout.write(f'Processing {reminder_type} booking reminders...')
            sent, failed = services.send_due_reminders(reminder_type)
            failures += failed
            self.stdout.write(f'{reminder_type} reminders: {sent} sent, {failed} failed')

        if failures:
            raise CommandError(f'{failures} reminder(s) could not be sent')

        self.stdout.write(self.style.SUCCESS('Reminders processed'))
