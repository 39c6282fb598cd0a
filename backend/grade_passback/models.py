import uuid

from django.db import models
from django.utils import timezone

from lti.models import LtiLaunch
from surveys.models import SurveyConfig


class GradePassbackQuerySet(models.QuerySet):
    def pending(self):
        return self.filter(processed=False)

    def for_user(self, user_id):
        return self.filter(user_email=user_id)


class GradePassback(models.Model):
    """A grade derived from one Qualtrics response, waiting for or already sent to the LMS grade book."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255, db_index=True)
    user_email = models.CharField(max_length=255, blank=True, db_index=True)
    lms_user_id = models.CharField(max_length=255, blank=True)
    lti_launch = models.ForeignKey(LtiLaunch, null=True, blank=True, on_delete=models.SET_NULL,
                                   related_name='grade_passbacks')
    survey_config = models.ForeignKey(SurveyConfig, on_delete=models.CASCADE, related_name='grade_passbacks')
    # One record per response, whichever path (poller or webhook) sees it first
    qualtrics_response_id = models.CharField(max_length=255, unique=True)
    grade = models.FloatField()
    max_grade = models.FloatField()
    timestamp = models.DateTimeField(default=timezone.now)
    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    error = models.TextField(blank=True)

    agilix_item_id = models.CharField(max_length=255, blank=True)
    agilix_domain_id = models.CharField(max_length=255, blank=True)
    agilix_enrollment_id = models.CharField(max_length=255, blank=True)

    objects = GradePassbackQuerySet.as_manager()

    class Meta:
        ordering = ['-timestamp']

    def __str__(self):
        return f"Grade {self.grade}/{self.max_grade} for {self.user_id} ({self.qualtrics_response_id})"

    def mark_processed(self):
        self.processed = True
        self.processed_at = timezone.now()
        self.error = ''
        self.save(update_fields=['processed', 'processed_at', 'error'])

    def mark_failed(self, error):
        self.processed = False
        self.processed_at = timezone.now()
        self.error = str(error)
        self.save(update_fields=['processed', 'processed_at', 'error'])
