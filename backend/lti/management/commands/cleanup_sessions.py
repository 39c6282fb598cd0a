from django.core.management.base import BaseCommand

from lti.services import cleanup_expired_sessions


class Command(BaseCommand):
    help = 'Delete LTI user sessions that have expired'

    def handle(self, *args, **options):
        deleted = cleanup_expired_sessions()
        self.stdout.write(self.style.SUCCESS(f'Deleted {deleted} expired session(s)'))
