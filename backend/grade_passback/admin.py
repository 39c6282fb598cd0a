from django.contrib import admin

from .models import GradePassback


@admin.register(GradePassback)
class GradePassbackAdmin(admin.ModelAdmin):
    list_display = ['user_id', 'survey_config', 'grade', 'max_grade', 'processed', 'timestamp', 'processed_at']
    list_filter = ['processed']
    search_fields = ['user_id', 'user_email', 'qualtrics_response_id']
    readonly_fields = ['id', 'qualtrics_response_id', 'timestamp', 'processed_at']
