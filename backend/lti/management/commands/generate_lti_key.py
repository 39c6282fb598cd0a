from pathlib import Path

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from lti.crypto import encrypt_text, generate_rsa_keypair
from lti.models import LtiKey


class Command(BaseCommand):
    help = 'Create the tool signing key, or import one from LTI_PRIVATE_KEY_PATH / LTI_PUBLIC_KEY_PATH'

    def add_arguments(self, parser):
        parser.add_argument('--key-id', type=str, help='defaults to LTI_KEY_ID')
        parser.add_argument('--import-files', action='store_true',
                            help='read PEM files from the configured key paths instead of generating')
        parser.add_argument('--key-size', type=int, default=2048)

    def handle(self, *args, **options):
        key_id = options.get('key_id') or settings.LTI.get('key_id')
        if not key_id:
            raise CommandError('A key id is required (--key-id or LTI_KEY_ID)')
        if LtiKey.objects.filter(key_id=key_id).exists():
            raise CommandError(f'Key {key_id} already exists')

        if options['import_files']:
            private_pem, public_pem = self._read_configured_keys()
        else:
            private_pem, public_pem = generate_rsa_keypair(options['key_size'])

        with transaction.atomic():
            # Only one key signs and is published at a time
            LtiKey.objects.filter(is_active=True).update(is_active=False)
            LtiKey.objects.create(
                key_id=key_id,
                public_key=public_pem,
                private_key=encrypt_text(private_pem),
            )

        self.stdout.write(self.style.SUCCESS(f'Stored signing key {key_id}'))

    def _read_configured_keys(self):
        private_path = settings.LTI.get('private_key_path')
        public_path = settings.LTI.get('public_key_path')
        if not private_path or not public_path:
            raise CommandError('LTI_PRIVATE_KEY_PATH and LTI_PUBLIC_KEY_PATH must both be set')
        try:
            return Path(private_path).read_text(), Path(public_path).read_text()
        except OSError as e:
            raise CommandError(f'Could not read key file: {e}')
