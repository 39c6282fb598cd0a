from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from agilix_integration.client import AgilixClient
from config.env import validate_config
from qualtrics_integration.client import QualtricsClient, QualtricsError


class Command(BaseCommand):
    help = 'Validate the environment and check that Qualtrics and Agilix accept our credentials'

    def add_arguments(self, parser):
        parser.add_argument('--survey', type=str, help='Qualtrics survey id to look up')

    def handle(self, *args, **options):
        failures = 0
        for error in validate_config(settings.CONNECTOR):
            failures += 1
            self.stdout.write(self.style.ERROR(f'Config: {error}'))

        if AgilixClient.from_settings().validate_connection():
            self.stdout.write(self.style.SUCCESS('Agilix: authenticated'))
        else:
            failures += 1
            self.stdout.write(self.style.ERROR('Agilix: authentication failed'))

        survey_id = options.get('survey')
        if survey_id:
            if QualtricsClient.from_settings().verify_survey(survey_id):
                self.stdout.write(self.style.SUCCESS(f'Qualtrics: survey {survey_id} found'))
            else:
                failures += 1
                self.stdout.write(self.style.ERROR(f'Qualtrics: survey {survey_id} not found'))
        else:
            try:
                QualtricsClient.from_settings().whoami()
                self.stdout.write(self.style.SUCCESS('Qualtrics: API token accepted'))
            except QualtricsError as e:
                failures += 1
                self.stdout.write(self.style.ERROR(f'Qualtrics: {e}'))

        if failures:
            raise CommandError(f'{failures} integration check(s) failed')
