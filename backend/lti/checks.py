from django.conf import settings
from django.core.checks import Error, register

from config.env import validate_config


@register(deploy=True)
def connector_configuration_check(app_configs, **kwargs):
    return [
        Error(message, id=f'connector.E{index:03d}')
        for index, message in enumerate(validate_config(settings.CONNECTOR), start=1)
    ]
