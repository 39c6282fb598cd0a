import hashlib
import hmac
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from rest_framework import permissions, status
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from lti.permissions import IsInstructor
from qualtrics_integration.client import QualtricsClient
from surveys.models import SurveyConfig
from surveys.views import check_survey_owner, get_survey_or_404
from .models import GradePassback
from .serializers import CompletionSerializer, GradePassbackSerializer
from .services import find_launch, grade_from_progress, pass_back_grade, process_records, record_grade

logger = logging.getLogger(__name__)


def valid_signature(secret, body, signature) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class SurveyGradesView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsInstructor]

    def get(self, request, survey_id):
        survey = get_survey_or_404(survey_id)
        check_survey_owner(survey, request.user)
        grades = survey.grade_passbacks.order_by('-timestamp')
        return Response({'success': True, 'data': GradePassbackSerializer(grades, many=True).data})


class UserGradesView(APIView):
    def get(self, request, user_id):
        session = request.user
        # Students only see their own grades
        if not session.is_instructor and session.user_id != user_id:
            raise PermissionDenied('Access denied')
        grades = GradePassback.objects.for_user(user_id).order_by('-timestamp')
        return Response({'success': True, 'data': GradePassbackSerializer(grades, many=True).data})


class ProcessCompletionView(APIView):
    """Webhook called when a respondent finishes a survey. Not session authenticated."""
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        secret = settings.QUALTRICS.get('webhook_secret')
        # Read the raw body before DRF parses it
        if secret and not valid_signature(secret, request.body, request.META.get('HTTP_X_QUALTRICS_SIGNATURE')):
            return Response({'success': False, 'error': 'Invalid signature'}, status=status.HTTP_401_UNAUTHORIZED)

        serializer = CompletionSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({'success': False, 'error': 'Missing required fields: responseId, surveyId, userId'},
                            status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        try:
            return self._process(data)
        except Exception:
            logger.exception('Error processing survey completion')
            return Response({'success': False, 'error': 'Failed to process survey completion'},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    def _process(self, data):
        survey = SurveyConfig.objects.filter(
            qualtrics_survey_id=data['surveyId'],
            context_id=data['contextId'],
            resource_link_id=data['resourceLinkId'],
        ).order_by('-created_at').first()
        if survey is None:
            return Response({'success': False, 'error': 'Survey configuration not found'},
                            status=status.HTTP_404_NOT_FOUND)

        if not survey.grade_passback_enabled:
            return Response({'success': True, 'message': 'Grade passback is disabled for this survey'})

        existing = GradePassback.objects.filter(qualtrics_response_id=data['responseId']).first()
        if existing is not None:
            return Response({
                'success': True,
                'data': GradePassbackSerializer(existing).data,
                'message': 'Grade passback already recorded',
            })

        response = QualtricsClient.from_settings().get_survey_response(data['surveyId'], data['responseId'])
        if not response:
            return Response({'success': False, 'error': 'Survey response not found'},
                            status=status.HTTP_404_NOT_FOUND)

        launch = find_launch(
            user_id=data['userId'],
            context_id=data['contextId'],
            resource_link_id=data['resourceLinkId'],
        )
        record, created = record_grade(
            survey,
            data['responseId'],
            data['userId'],
            grade_from_progress(survey, response),
            lti_launch=launch,
        )
        return Response({
            'success': True,
            'data': GradePassbackSerializer(record).data,
            'message': 'Grade passback created successfully' if created else 'Grade passback already recorded',
        })


class PassbackView(APIView):
    """Manually push one grade record to the LMS."""
    permission_classes = [permissions.IsAuthenticated, IsInstructor]

    def post(self, request, grade_id):
        try:
            record = GradePassback.objects.select_related('survey_config', 'lti_launch').get(pk=grade_id)
        except (GradePassback.DoesNotExist, ValidationError, ValueError):
            raise NotFound('Grade record not found')
        check_survey_owner(record.survey_config, request.user)

        try:
            if not pass_back_grade(record):
                return Response({'success': False, 'error': 'Failed to pass back grade'},
                                status=status.HTTP_500_INTERNAL_SERVER_ERROR)
            record.mark_processed()
        except Exception:
            logger.exception('Error processing grade passback %s', record.id)
            return Response({'success': False, 'error': 'Failed to process grade passback'},
                            status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({'success': True, 'message': 'Grade passed back successfully'})


class BulkPassbackView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsInstructor]

    def post(self, request, survey_id):
        survey = get_survey_or_404(survey_id)
        check_survey_owner(survey, request.user)

        pending = survey.grade_passbacks.pending().select_related('lti_launch')
        if not pending.exists():
            return Response({'success': True, 'message': 'No grades to process', 'data': {'processed': 0}})

        result = process_records(pending)
        return Response({
            'success': True,
            'message': f"Processed {result['processed']} out of {result['total']} grades",
            'data': result,
        })


class SubmissionStatusView(APIView):
    def get(self, request, survey_id):
        survey = get_survey_or_404(survey_id)
        latest = survey.grade_passbacks.filter(user_email=request.user.user_id).order_by('-timestamp').first()
        if latest is None:
            return Response({'success': True, 'data': {'submitted': False, 'message': 'No submission found'}})
        return Response({
            'success': True,
            'data': {
                'submitted': True,
                'submittedAt': latest.timestamp,
                'grade': latest.grade,
                'maxGrade': latest.max_grade,
                'processed': latest.processed,
                'responseId': latest.qualtrics_response_id,
            },
        })
