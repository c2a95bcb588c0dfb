"""
Management command to list a user's event occurrences.

Expands every stored definition of the user over the requested window and
prints one line per occurrence, e.g. for checking a calendar from cron jobs
or support shells.
"""

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date

from events import services
from events.exceptions import FetchError


class Command(BaseCommand):
    help = 'List event occurrences for a user over the coming days'

    def add_arguments(self, parser):
        parser.add_argument(
            '--user',
            required=True,
            help='Id of the user whose events are listed'
        )
        parser.add_argument(
            '--days',
            type=int,
            default=7,
            help='Number of days to list, including the start date (default: 7)'
        )
        parser.add_argument(
            '--start',
            help='First date to list, YYYY-MM-DD (default: today)'
        )

    def handle(self, *args, **options):
        days = options['days']
        if days < 1:
            raise CommandError('--days must be at least 1')

        start = timezone.localdate()
        if options['start']:
            start = parse_date(options['start'])
            if start is None:
                raise CommandError(f"Invalid --start date: {options['start']}")
        end = start + timedelta(days=days - 1)

        self.stdout.write(
            f"Listing occurrences for {options['user']} from {start} to {end}..."
        )

        try:
            result = services.list_occurrences(options['user'], start, end)
        except FetchError as exc:
            raise CommandError(f'Could not fetch events: {exc}') from exc

        for occurrence in result:
            local_start = timezone.localtime(occurrence.start_time)
            self.stdout.write(
                f"{local_start.strftime('%Y-%m-%d %H:%M')}  {occurrence.title}  [{occurrence.id}]"
            )

        if result.truncated:
            self.stdout.write(self.style.WARNING(
                f"Expansion truncated for: {', '.join(result.truncated_definitions)}; "
                f"try a shorter --days window"
            ))

        self.stdout.write(
            self.style.SUCCESS(f'Found {len(result)} occurrence(s)')
        )
