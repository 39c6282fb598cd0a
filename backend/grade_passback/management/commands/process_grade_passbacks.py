from django.core.management.base import BaseCommand

from grade_passback.services import process_pending


class Command(BaseCommand):
    help = 'Pass back pending grade records to Agilix, oldest first'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=50)

    def handle(self, *args, **options):
        result = process_pending(limit=options['limit'])
        self.stdout.write(
            self.style.SUCCESS(f"Processed {result['processed']} out of {result['total']} grades")
        )
