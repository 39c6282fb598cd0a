from django.apps import AppConfig


class LtiConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'lti'
    verbose_name = 'LTI launches'

    def ready(self):
        from . import checks  # noqa: F401
