"""pylti1p3 wiring: tool configuration built from the database."""
from django.core.exceptions import ImproperlyConfigured
from pylti1p3.contrib.django import DjangoCacheDataStorage
from pylti1p3.registration import Registration
from pylti1p3.tool_config import ToolConfDict

from .crypto import decrypt_text
from .models import LtiKey, LtiPlatform


def active_signing_key():
    return LtiKey.objects.filter(is_active=True).order_by('-created_at').first()


def platform_config(platforms) -> dict:
    """ToolConfDict input: one list of client registrations per issuer, first one is the default."""
    data = {}
    for platform in platforms:
        registrations = data.setdefault(platform.issuer, [])
        registrations.append({
            'default': not registrations,
            'client_id': platform.client_id,
            'auth_login_url': platform.auth_login_url,
            'auth_token_url': platform.auth_token_url,
            'key_set_url': platform.key_set_url,
            'deployment_ids': list(platform.deployment_ids or []),
        })
    return data


def get_tool_config() -> ToolConfDict:
    key = active_signing_key()
    if key is None:
        raise ImproperlyConfigured('No active LTI signing key; run manage.py generate_lti_key')

    platforms = list(LtiPlatform.objects.filter(is_active=True))
    tool_conf = ToolConfDict(platform_config(platforms))
    private_key = decrypt_text(key.private_key)
    for platform in platforms:
        tool_conf.set_private_key(platform.issuer, private_key, client_id=platform.client_id)
        tool_conf.set_public_key(platform.issuer, key.public_key, client_id=platform.client_id)
    return tool_conf


def get_launch_data_storage():
    return DjangoCacheDataStorage(cache_name='default')


def get_jwks() -> dict:
    keys = LtiKey.objects.filter(is_active=True).order_by('-created_at')
    return {'keys': [Registration.get_jwk(key.public_key) for key in keys]}
