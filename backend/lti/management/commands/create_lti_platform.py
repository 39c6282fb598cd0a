from django.core.management.base import BaseCommand

from lti.models import LtiPlatform


class Command(BaseCommand):
    help = 'Register (or update) an LMS platform allowed to launch the tool'

    def add_arguments(self, parser):
        parser.add_argument('--name', required=True)
        parser.add_argument('--issuer', required=True, help='platform issuer (iss claim)')
        parser.add_argument('--client-id', required=True)
        parser.add_argument('--auth-login-url', required=True)
        parser.add_argument('--auth-token-url', required=True)
        parser.add_argument('--key-set-url', required=True)
        parser.add_argument('--deployment-id', action='append', dest='deployment_ids', default=[],
                            help='may be given more than once')

    def handle(self, *args, **options):
        platform, created = LtiPlatform.objects.update_or_create(
            issuer=options['issuer'],
            client_id=options['client_id'],
            defaults={
                'name': options['name'],
                'auth_login_url': options['auth_login_url'],
                'auth_token_url': options['auth_token_url'],
                'key_set_url': options['key_set_url'],
                'deployment_ids': options['deployment_ids'],
                'is_active': True,
            }
        )

        if created:
            self.stdout.write(self.style.SUCCESS(f'Created platform: {platform}'))
        else:
            self.stdout.write(self.style.WARNING(f'Updated platform: {platform}'))
