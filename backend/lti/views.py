import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.http import HttpResponse, HttpResponseRedirect, JsonResponse
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST
from pylti1p3.contrib.django import DjangoMessageLaunch, DjangoOIDCLogin
from pylti1p3.deep_link_resource import DeepLinkResource
from pylti1p3.exception import LtiException
from rest_framework import exceptions, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .authentication import resolve_session
from .serializers import UserSessionSerializer
from .services import LaunchError, create_user_session, launch_destination, record_launch
from .tool import get_jwks, get_launch_data_storage, get_tool_config

logger = logging.getLogger(__name__)

DEEP_LINKING_SETTINGS_CLAIM = 'https://purl.imsglobal.org/spec/lti-dl/claim/deep_linking_settings'
SERVICE_NAME = 'Qualtrics LTI Connector'
SERVICE_VERSION = '1.0.0'


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def login(request):
    """OIDC login initiation; the LMS sends the browser here first."""
    try:
        tool_conf = get_tool_config()
        target_link_uri = request.GET.get('target_link_uri') or request.POST.get('target_link_uri')
        oidc_login = DjangoOIDCLogin(request, tool_conf, launch_data_storage=get_launch_data_storage())
        return oidc_login.enable_check_cookies().redirect(target_link_uri)
    except (LtiException, ImproperlyConfigured):
        logger.exception('LTI login error')
        return HttpResponse('Login failed', status=500)


@csrf_exempt
@require_POST
def launch(request):
    try:
        tool_conf = get_tool_config()
        message_launch = DjangoMessageLaunch(request, tool_conf, launch_data_storage=get_launch_data_storage())
        launch_data = message_launch.get_launch_data()
    except LtiException:
        logger.exception('LTI launch validation failed')
        return HttpResponse('Launch failed', status=401)
    except ImproperlyConfigured:
        logger.exception('LTI tool is not configured')
        return HttpResponse('Launch failed', status=500)

    if message_launch.is_deep_link_launch():
        return _deep_link_response(request, message_launch, launch_data)

    logger.info('LTI connection established')
    try:
        lti_launch = record_launch(launch_data)
        session = create_user_session(lti_launch)
        destination = launch_destination(lti_launch, session)
    except LaunchError as e:
        logger.warning('Rejected LTI launch: %s', e)
        return HttpResponse(str(e), status=400)
    except Exception:
        logger.exception('Error handling LTI launch')
        return HttpResponse('Error processing LTI launch', status=500)

    if destination is None:
        return HttpResponse('Survey not configured. Please contact your instructor.', status=404)
    return HttpResponseRedirect(destination)


def _deep_link_response(request, message_launch, launch_data):
    logger.info('Deep linking request received')
    if not launch_data.get(DEEP_LINKING_SETTINGS_CLAIM):
        return HttpResponse('Deep linking settings not found', status=400)

    resource = DeepLinkResource()
    resource.set_url(request.build_absolute_uri(reverse('lti-launch'))) \
        .set_title('Qualtrics Survey') \
        .set_custom_params({'survey_type': 'new'})
    try:
        html = message_launch.get_deep_link().output_response_form([resource])
    except LtiException:
        logger.exception('Error handling deep linking')
        return HttpResponse('Error processing deep linking', status=500)
    return HttpResponse(html)


@require_GET
def keys(request):
    return JsonResponse(get_jwks())


class HealthView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response({'status': 'healthy', 'timestamp': timezone.now().isoformat()})


class HelpView(APIView):
    """Pre-flight document LMS administrators use to register the tool."""
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        launch_url = request.build_absolute_uri(reverse('lti-launch'))
        return Response({
            'status': 'ready',
            'service': SERVICE_NAME,
            'version': SERVICE_VERSION,
            'ltiVersion': '1.3',
            'endpoints': {
                'launch': launch_url,
                'login': request.build_absolute_uri(reverse('lti-login')),
                'jwks': request.build_absolute_uri(reverse('lti-keys')),
                'deepLinking': launch_url,
            },
            'features': {
                'gradePassback': True,
                'deepLinking': True,
                'namesRoles': False,
                'extraCredit': True,
                'emailBasedIdentity': True,
            },
            'configuration': {
                'instructions': 'Configure your LMS with the endpoints above',
                'requiredClaims': ['sub', 'email', 'name'],
                'sessionTimeout': f"{settings.SESSION_TIMEOUT_HOURS} hour(s)",
                'pollingInterval': '5 minutes',
            },
            'healthCheck': {
                'database': True,
                'timestamp': timezone.now().isoformat(),
            },
        })


class AppView(APIView):
    """Landing data for the front-end once it holds a session id."""

    def get(self, request):
        session = request.user
        if session.is_instructor:
            user_type = 'instructor'
            message = 'Welcome, Instructor! You can create and manage Qualtrics surveys.'
        else:
            user_type = 'student'
            message = 'Welcome, Student! Available surveys will be displayed here.'
        return Response({
            'success': True,
            'userType': user_type,
            'contextId': session.context_id,
            'resourceLinkId': session.resource_link_id,
            'sessionId': str(session.id),
            'message': message,
        })


class SessionDetailView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def get(self, request, session_id):
        try:
            session = resolve_session(session_id)
        except exceptions.AuthenticationFailed as e:
            return Response({'success': False, 'error': str(e.detail)}, status=status.HTTP_401_UNAUTHORIZED)
        return Response({'success': True, 'data': UserSessionSerializer(session).data})
