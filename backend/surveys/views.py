import logging

from django.core.exceptions import ValidationError
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.response import Response

from lti.permissions import IsInstructor
from lti.services import survey_embedded_data
from qualtrics_integration.client import QualtricsClient, QualtricsError
from .models import SurveyConfig
from .serializers import SurveyConfigSerializer

logger = logging.getLogger(__name__)

INSTRUCTOR_ACTIONS = ('create', 'update', 'partial_update', 'destroy', 'responses')


def get_survey_or_404(survey_id) -> SurveyConfig:
    try:
        return SurveyConfig.objects.get(pk=survey_id)
    except (SurveyConfig.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Survey not found')


def check_survey_owner(survey, session):
    if survey.instructor_id != session.user_id:
        raise PermissionDenied('Access denied')


class SurveyConfigViewSet(viewsets.GenericViewSet):
    """Survey configurations for the course (LMS context) of the calling session."""
    serializer_class = SurveyConfigSerializer
    queryset = SurveyConfig.objects.all()

    def get_permissions(self):
        if self.action in INSTRUCTOR_ACTIONS:
            return [permissions.IsAuthenticated(), IsInstructor()]
        return super().get_permissions()

    def get_qualtrics(self):
        return QualtricsClient.from_settings()

    def list(self, request):
        surveys = SurveyConfig.objects.active().for_context(request.user.context_id).order_by('-created_at')
        return Response({'success': True, 'data': self.get_serializer(surveys, many=True).data})

    def retrieve(self, request, pk=None):
        survey = get_survey_or_404(pk)
        if survey.context_id != request.user.context_id:
            raise PermissionDenied('Access denied')
        return Response({'success': True, 'data': self.get_serializer(survey).data})

    def create(self, request):
        session = request.user
        details = request.data.get('qualtricsDetails') if hasattr(request.data, 'get') else None
        if not isinstance(details, dict) or not details.get('surveyId'):
            return Response({'success': False, 'error': 'Qualtrics survey ID is required'},
                            status=status.HTTP_400_BAD_REQUEST)

        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        survey_id = serializer.validated_data['qualtrics_survey_id']

        qualtrics = self.get_qualtrics()
        if not qualtrics.verify_survey(survey_id):
            return Response({'success': False, 'error': 'Survey not found in Qualtrics'},
                            status=status.HTTP_400_BAD_REQUEST)

        distribution_id = serializer.validated_data.get('qualtrics_distribution_id')
        try:
            if not distribution_id:
                distribution_id = qualtrics.create_distribution(survey_id, f'LTI Distribution - {session.context_id}')
        except QualtricsError:
            logger.exception('Error creating survey config')
            return Response({'success': False, 'error': 'Failed to create survey configuration'},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        survey = serializer.save(
            instructor_id=session.user_id,
            context_id=session.context_id,
            resource_link_id=session.resource_link_id,
            qualtrics_distribution_id=distribution_id,
        )
        logger.info('Survey configuration created: %s', survey.id)
        return Response({
            'success': True,
            'data': self.get_serializer(survey).data,
            'message': 'Survey configuration created successfully',
        }, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None):
        survey = get_survey_or_404(pk)
        check_survey_owner(survey, request.user)

        serializer = self.get_serializer(survey, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        survey = serializer.save()
        logger.info('Survey configuration updated: %s', survey.id)
        return Response({
            'success': True,
            'data': self.get_serializer(survey).data,
            'message': 'Survey configuration updated successfully',
        })

    partial_update = update

    def destroy(self, request, pk=None):
        survey = get_survey_or_404(pk)
        check_survey_owner(survey, request.user)

        # Soft delete; grade records keep pointing at the config
        survey.is_active = False
        survey.save(update_fields=['is_active', 'updated_at'])
        logger.info('Survey configuration deleted: %s', survey.id)
        return Response({'success': True, 'message': 'Survey configuration deleted successfully'})

    @action(detail=True, methods=['get'])
    def responses(self, request, pk=None):
        survey = get_survey_or_404(pk)
        check_survey_owner(survey, request.user)

        try:
            responses = self.get_qualtrics().get_survey_responses(survey.qualtrics_survey_id)
        except QualtricsError:
            logger.exception('Error fetching survey responses')
            return Response({'success': False, 'error': 'Failed to fetch survey responses'},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({'success': True, 'data': responses})

    @action(detail=True, methods=['post'])
    def link(self, request, pk=None):
        session = request.user
        survey = get_survey_or_404(pk)
        if not survey.is_active or survey.context_id != session.context_id:
            return Response({'success': False, 'error': 'Survey not accessible'}, status=status.HTTP_403_FORBIDDEN)

        survey_link = self.get_qualtrics().generate_survey_link(
            survey.qualtrics_survey_id,
            survey.qualtrics_distribution_id or '',
            survey_embedded_data(session.launch),
        )
        return Response({
            'success': True,
            'data': {'surveyLink': survey_link},
            'message': 'Survey link generated successfully',
        })
