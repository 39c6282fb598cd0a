from django.test import SimpleTestCase
from rest_framework import exceptions

from .env import (
    ConfigurationError, get_log_level, get_validated_config, is_development, is_production, load_config,
    validate_config,
)
from .exceptions import envelope_exception_handler

VALID_ENV = {
    'QUALTRICS_API_TOKEN': 'q-token',
    'AGILIX_DOMAIN': 'school',
    'AGILIX_USERNAME': 'svc',
    'AGILIX_PASSWORD': 'pw',
    'LTI_ISSUER': 'https://tool.example.com',
    'LTI_KEY_ID': 'tool-key-1',
    'JWT_SECRET': 'jwt-secret',
    'ENCRYPTION_KEY': 'x' * 32,
}


class LoadConfigTest(SimpleTestCase):
    def test_defaults(self):
        config = load_config({})
        self.assertEqual(config['qualtrics']['base_url'], 'https://iad1.qualtrics.com')
        self.assertEqual(config['agilix']['base_url'], 'https://api.agilix.com')
        self.assertEqual(config['app']['session_timeout_hours'], 1)
        self.assertEqual(config['app']['max_grade_default'], 100)
        self.assertEqual(config['app']['env'], 'development')
        self.assertNotIn('email', config)
        self.assertNotIn('monitoring', config)

    def test_optional_groups(self):
        config = load_config(dict(VALID_ENV, SMTP_HOST='smtp.example.com', SENTRY_DSN='https://dsn'))
        self.assertEqual(config['email']['smtp_port'], 587)
        self.assertEqual(config['monitoring']['sentry_dsn'], 'https://dsn')
        self.assertIsNone(config['monitoring']['google_analytics_id'])

    def test_valid_environment(self):
        self.assertEqual(validate_config(load_config(VALID_ENV)), [])
        self.assertEqual(get_validated_config(VALID_ENV)['lti']['key_id'], 'tool-key-1')

    def test_reports_every_problem(self):
        env = dict(VALID_ENV, ENCRYPTION_KEY='short', SESSION_TIMEOUT_HOURS='48', MAX_GRADE_DEFAULT='0')
        del env['AGILIX_PASSWORD']
        errors = validate_config(load_config(env))
        self.assertEqual(errors, [
            'Agilix password is required',
            'Encryption key must be at least 32 characters long',
            'Session timeout must be between 1 and 24 hours',
            'Max grade default must be between 1 and 1000',
        ])

    def test_smtp_credentials_required(self):
        errors = validate_config(load_config(dict(VALID_ENV, SMTP_HOST='smtp.example.com')))
        self.assertIn('SMTP user is required when SMTP host is set', errors)

    def test_get_validated_config_raises(self):
        with self.assertRaises(ConfigurationError) as ctx:
            get_validated_config({})
        self.assertIn('Qualtrics API token is required', ctx.exception.errors)

    def test_environment_helpers(self):
        self.assertTrue(is_development({}))
        self.assertFalse(is_production({}))
        self.assertTrue(is_production({'APP_ENV': 'production'}))
        self.assertEqual(get_log_level({}), 'DEBUG')
        self.assertEqual(get_log_level({'APP_ENV': 'production'}), 'INFO')
        self.assertEqual(get_log_level({'APP_ENV': 'production', 'LOG_LEVEL': 'warning'}), 'WARNING')


class ExceptionHandlerTest(SimpleTestCase):
    def test_wraps_detail(self):
        response = envelope_exception_handler(exceptions.NotFound('Survey not found'), {})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data, {'success': False, 'error': 'Survey not found'})

    def test_validation_errors_keep_details(self):
        exc = exceptions.ValidationError({'settings': {'maxGrade': ['Ensure this value is less than or equal to 1000.']}})
        response = envelope_exception_handler(exc, {})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.data['success'])
        self.assertTrue(response.data['error'].startswith('settings: maxGrade:'))
        self.assertIn('settings', response.data['details'])

    def test_unhandled_exceptions_pass_through(self):
        self.assertIsNone(envelope_exception_handler(ValueError('boom'), {}))
