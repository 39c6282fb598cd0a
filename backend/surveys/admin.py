from django.contrib import admin

from .models import SurveyConfig


@admin.register(SurveyConfig)
class SurveyConfigAdmin(admin.ModelAdmin):
    list_display = ['survey_name', 'qualtrics_survey_id', 'context_id', 'instructor_id', 'scoring_type',
                    'is_active', 'grade_passback_enabled', 'last_poll_time']
    list_filter = ['is_active', 'grade_passback_enabled', 'scoring_type']
    search_fields = ['survey_name', 'qualtrics_survey_id', 'context_id', 'instructor_id']
    readonly_fields = ['id', 'created_at', 'updated_at']
