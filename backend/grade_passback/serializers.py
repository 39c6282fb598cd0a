from rest_framework import serializers

from .models import GradePassback


class GradePassbackSerializer(serializers.ModelSerializer):
    userId = serializers.CharField(source='user_id')
    userEmail = serializers.CharField(source='user_email')
    lmsUserId = serializers.CharField(source='lms_user_id')
    ltiLaunchId = serializers.UUIDField(source='lti_launch_id', allow_null=True)
    surveyConfigId = serializers.UUIDField(source='survey_config_id')
    qualtricsResponseId = serializers.CharField(source='qualtrics_response_id')
    maxGrade = serializers.FloatField(source='max_grade')
    processedAt = serializers.DateTimeField(source='processed_at', allow_null=True)

    class Meta:
        model = GradePassback
        fields = [
            'id', 'userId', 'userEmail', 'lmsUserId', 'ltiLaunchId', 'surveyConfigId', 'qualtricsResponseId',
            'grade', 'maxGrade', 'timestamp', 'processed', 'processedAt', 'error',
        ]


class CompletionSerializer(serializers.Serializer):
    """Body of the survey-completion webhook."""
    responseId = serializers.CharField()
    surveyId = serializers.CharField()
    userId = serializers.CharField()
    contextId = serializers.CharField(required=False, allow_blank=True, default='')
    resourceLinkId = serializers.CharField(required=False, allow_blank=True, default='')
