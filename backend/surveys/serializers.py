from rest_framework import serializers

from .models import SurveyConfig


class QualtricsDetailsSerializer(serializers.Serializer):
    surveyId = serializers.CharField(source='qualtrics_survey_id', max_length=64)
    brandId = serializers.CharField(source='qualtrics_brand_id', required=False, allow_blank=True, allow_null=True)
    libraryId = serializers.CharField(source='qualtrics_library_id', required=False, allow_blank=True, allow_null=True)
    distributionId = serializers.CharField(source='qualtrics_distribution_id', required=False, allow_blank=True,
                                           allow_null=True)


class SurveySettingsSerializer(serializers.Serializer):
    surveyName = serializers.CharField(source='survey_name', required=False, max_length=255)
    isActive = serializers.BooleanField(source='is_active', required=False)
    allowMultipleResponses = serializers.BooleanField(source='allow_multiple_responses', required=False)
    gradePassbackEnabled = serializers.BooleanField(source='grade_passback_enabled', required=False)
    maxGrade = serializers.FloatField(source='max_grade', required=False, min_value=1, max_value=1000)
    isExtraCredit = serializers.BooleanField(source='is_extra_credit', required=False)
    scoringType = serializers.ChoiceField(source='scoring_type', choices=SurveyConfig.SCORING_TYPES, required=False)
    dueDate = serializers.DateTimeField(source='due_date', required=False, allow_null=True)


class SurveyConfigSerializer(serializers.ModelSerializer):
    """Survey config in the shape the front-end pages use.

    Qualtrics details and settings are nested on the wire but flat on the model;
    ownership, context and resource link come from the session and never from the body.
    """
    instructorId = serializers.CharField(source='instructor_id', read_only=True)
    contextId = serializers.CharField(source='context_id', read_only=True)
    resourceLinkId = serializers.CharField(source='resource_link_id', read_only=True)
    qualtricsDetails = QualtricsDetailsSerializer(source='*')
    settings = SurveySettingsSerializer(source='*', required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)
    lastPollTime = serializers.DateTimeField(source='last_poll_time', read_only=True)

    class Meta:
        model = SurveyConfig
        fields = [
            'id', 'instructorId', 'contextId', 'resourceLinkId', 'qualtricsDetails', 'settings',
            'createdAt', 'updatedAt', 'lastPollTime',
        ]
        read_only_fields = ['id']
