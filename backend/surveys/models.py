import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone


def default_max_grade():
    return getattr(settings, 'MAX_GRADE_DEFAULT', 100)


class SurveyConfigQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)

    def for_context(self, context_id):
        return self.filter(context_id=context_id)

    def active_for_resource(self, context_id, resource_link_id):
        """The survey an LMS resource link launches, if an instructor attached one."""
        return self.active().filter(
            context_id=context_id,
            resource_link_id=resource_link_id,
        ).order_by('-created_at').first()

    def pollable(self):
        return self.active().filter(grade_passback_enabled=True)


class SurveyConfig(models.Model):
    """A Qualtrics survey attached by an instructor to one LMS resource link."""
    SCORING_TYPES = [
        ('completion', 'Completion'),
        ('percentage', 'Percentage'),
        ('manual', 'Manual'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    instructor_id = models.CharField(max_length=255, db_index=True)
    context_id = models.CharField(max_length=255, db_index=True)
    resource_link_id = models.CharField(max_length=255)

    # Qualtrics details
    qualtrics_survey_id = models.CharField(max_length=64)
    qualtrics_brand_id = models.CharField(max_length=255, blank=True, null=True)
    qualtrics_library_id = models.CharField(max_length=255, blank=True, null=True)
    qualtrics_distribution_id = models.CharField(max_length=255, blank=True, null=True)

    # Settings
    survey_name = models.CharField(max_length=255, default='Untitled Survey')
    is_active = models.BooleanField(default=True)
    allow_multiple_responses = models.BooleanField(default=False)
    grade_passback_enabled = models.BooleanField(default=True)
    max_grade = models.FloatField(default=default_max_grade)
    is_extra_credit = models.BooleanField(default=False)
    scoring_type = models.CharField(max_length=20, choices=SCORING_TYPES, default='completion')
    due_date = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    last_poll_time = models.DateTimeField(null=True, blank=True)

    objects = SurveyConfigQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['context_id', 'resource_link_id']),
        ]

    def __str__(self):
        return f"{self.survey_name} ({self.qualtrics_survey_id})"
