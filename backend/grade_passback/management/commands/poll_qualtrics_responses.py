from django.core.management.base import BaseCommand

from grade_passback.services import ResponsePoller


class Command(BaseCommand):
    help = 'Fetch finished Qualtrics responses and create pending grade records (run every 5 minutes)'

    def add_arguments(self, parser):
        parser.add_argument('--lookback-hours', type=int, help='window for surveys that were never polled')

    def handle(self, *args, **options):
        stats = ResponsePoller(lookback_hours=options.get('lookback_hours')).poll_all()
        message = f"Polled {stats['surveys']} survey(s): {stats['created']} grade record(s) created"
        if stats['failed']:
            self.stdout.write(self.style.WARNING(f"{message}, {stats['failed']} survey(s) failed"))
        else:
            self.stdout.write(self.style.SUCCESS(message))
