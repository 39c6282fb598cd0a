from django.apps import AppConfig


class GradePassbackConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'grade_passback'
    verbose_name = 'Grade passback'

    def ready(self):
        from . import signals  # noqa: F401
