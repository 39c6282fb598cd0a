import logging

from django.conf import settings
from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import GradePassback
from .services import process_record

logger = logging.getLogger(__name__)


@receiver(post_save, sender=GradePassback)
def pass_back_new_grade(sender, instance, created, **kwargs):
    """Attempt the LMS passback as soon as a record is stored, when enabled.

    Failures are stored on the record; `process_grade_passbacks` retries them.
    """
    if not created or not getattr(settings, 'GRADE_PASSBACK_ON_CREATE', False):
        return
    logger.info('Processing grade passback: %s', instance.id)
    transaction.on_commit(lambda: process_record(instance))
