"""
Management command to materialize upcoming bookings of active recurring bookings.

This command should be run periodically (e.g., daily via cron) so that every
active series always has bookings on the calendar.
"""

import logging

from django.core.management.base import BaseCommand
from bookings import services
from bookings.types import generation_cap

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Materialize bookings for active recurring bookings'

    def add_arguments(self, parser):
        parser.add_argument(
            '--max',
            type=int,
            default=None,
            help='Occurrences to materialize per series (default: BOOKINGS["GENERATION_CAP"] or 52)'
        )

    def handle(self, *args, **options):
        max_to_generate = options['max'] or generation_cap()

        self.stdout.write(
            f'Extending active recurring bookings by up to {max_to_generate} occurrence(s)...'
        )

        total_created = services.extend_all_active_recurring_bookings(
            max_to_generate=max_to_generate
        )
        logger.info("extend_recurring_bookings created %d booking(s)", total_created)

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully created {total_created} new booking(s)'
            )
        )
