"""Environment-driven configuration for the connector.

Settings are read once from the process environment into a nested dict and
validated separately, so a partially configured development box can still
import Django settings while `manage.py check --deploy` reports every problem.
"""
import os

from django.core.exceptions import ImproperlyConfigured


API_TIMEOUT_SECONDS = 30
MIN_GRADE = 0


class ConfigurationError(ImproperlyConfigured):
    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__('Configuration validation failed:\n' + '\n'.join(self.errors))


def _int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def load_config(environ=None) -> dict:
    env = os.environ if environ is None else environ

    def get(key, default=''):
        return env.get(key) or default

    config = {
        'qualtrics': {
            'api_token': get('QUALTRICS_API_TOKEN'),
            'base_url': get('QUALTRICS_BASE_URL', 'https://iad1.qualtrics.com').rstrip('/'),
            'brand_id': get('QUALTRICS_BRAND_ID') or None,
            'library_id': get('QUALTRICS_LIBRARY_ID') or None,
            'webhook_secret': get('QUALTRICS_WEBHOOK_SECRET') or None,
        },
        'agilix': {
            'domain': get('AGILIX_DOMAIN'),
            'username': get('AGILIX_USERNAME'),
            'password': get('AGILIX_PASSWORD'),
            'base_url': get('AGILIX_BASE_URL', 'https://api.agilix.com').rstrip('/'),
            'webhook_secret': get('AGILIX_WEBHOOK_SECRET') or None,
        },
        'lti': {
            'issuer': get('LTI_ISSUER'),
            'key_id': get('LTI_KEY_ID'),
            'private_key_path': get('LTI_PRIVATE_KEY_PATH') or None,
            'public_key_path': get('LTI_PUBLIC_KEY_PATH') or None,
            'frontend_url': get('LTI_FRONTEND_URL').rstrip('/'),
        },
        'app': {
            'env': get('APP_ENV', 'development'),
            'log_level': get('LOG_LEVEL', 'info'),
            'session_timeout_hours': _int(get('SESSION_TIMEOUT_HOURS', '1'), 1),
            'max_grade_default': _int(get('MAX_GRADE_DEFAULT', '100'), 100),
        },
        'security': {
            'jwt_secret': get('JWT_SECRET'),
            'encryption_key': get('ENCRYPTION_KEY'),
        },
    }

    smtp_host = get('SMTP_HOST')
    if smtp_host:
        config['email'] = {
            'smtp_host': smtp_host,
            'smtp_port': _int(get('SMTP_PORT', '587'), 587),
            'smtp_user': get('SMTP_USER'),
            'smtp_pass': get('SMTP_PASS'),
        }

    sentry_dsn = get('SENTRY_DSN') or None
    analytics_id = get('GOOGLE_ANALYTICS_ID') or None
    if sentry_dsn or analytics_id:
        config['monitoring'] = {
            'sentry_dsn': sentry_dsn,
            'google_analytics_id': analytics_id,
        }

    return config


def validate_config(config: dict) -> list:
    """Return a list of human readable problems; empty when the config is usable."""
    errors = []

    if not config['qualtrics']['api_token']:
        errors.append('Qualtrics API token is required')
    if not config['qualtrics']['base_url']:
        errors.append('Qualtrics base URL is required')

    if not config['agilix']['domain']:
        errors.append('Agilix domain is required')
    if not config['agilix']['username']:
        errors.append('Agilix username is required')
    if not config['agilix']['password']:
        errors.append('Agilix password is required')

    if not config['lti']['issuer']:
        errors.append('LTI issuer is required')
    if not config['lti']['key_id']:
        errors.append('LTI key ID is required')

    if not config['security']['jwt_secret']:
        errors.append('JWT secret is required')
    if len(config['security']['encryption_key'] or '') < 32:
        errors.append('Encryption key must be at least 32 characters long')

    if not 1 <= config['app']['session_timeout_hours'] <= 24:
        errors.append('Session timeout must be between 1 and 24 hours')
    if not 1 <= config['app']['max_grade_default'] <= 1000:
        errors.append('Max grade default must be between 1 and 1000')

    if 'email' in config:
        if not config['email']['smtp_user']:
            errors.append('SMTP user is required when SMTP host is set')
        if not config['email']['smtp_pass']:
            errors.append('SMTP password is required when SMTP host is set')

    return errors


def get_validated_config(environ=None) -> dict:
    config = load_config(environ)
    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)
    return config


def is_development(environ=None) -> bool:
    env = os.environ if environ is None else environ
    return env.get('APP_ENV', 'development') == 'development'


def is_production(environ=None) -> bool:
    env = os.environ if environ is None else environ
    return env.get('APP_ENV') == 'production'


def get_log_level(environ=None) -> str:
    env = os.environ if environ is None else environ
    level = env.get('LOG_LEVEL') or ('debug' if is_development(env) else 'info')
    return level.upper()
