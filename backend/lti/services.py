import logging
from datetime import timedelta
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from .models import LtiLaunch, UserSession

logger = logging.getLogger(__name__)

CLAIM_PREFIX = 'https://purl.imsglobal.org/spec/lti/claim/'
CLAIM_DEPLOYMENT_ID = CLAIM_PREFIX + 'deployment_id'
CLAIM_CONTEXT = CLAIM_PREFIX + 'context'
CLAIM_RESOURCE_LINK = CLAIM_PREFIX + 'resource_link'
CLAIM_ROLES = CLAIM_PREFIX + 'roles'
CLAIM_CUSTOM = CLAIM_PREFIX + 'custom'

STAFF_ROLE_MARKERS = ('Instructor', 'TeachingAssistant', 'Teacher', 'Administrator')


class LaunchError(ValueError):
    """Raised when a validated launch lacks data the connector relies on."""


def has_staff_role(roles) -> bool:
    return any(marker in role for role in roles or [] for marker in STAFF_ROLE_MARKERS)


def extract_launch_claims(claims: dict) -> dict:
    """Pull the fields stored on LtiLaunch out of an already validated id_token payload."""
    email = claims.get('email')
    if not email:
        raise LaunchError('Email address is required for user identification')

    context = claims.get(CLAIM_CONTEXT) or {}
    resource_link = claims.get(CLAIM_RESOURCE_LINK) or {}
    if not context.get('id'):
        raise LaunchError('Launch is missing the context claim')
    if not resource_link.get('id'):
        raise LaunchError('Launch is missing the resource link claim')

    return {
        'user_id': email,
        'lms_user_id': claims.get('sub') or '',
        'platform_id': claims.get('iss') or '',
        'deployment_id': claims.get(CLAIM_DEPLOYMENT_ID) or '',
        'context_id': context['id'],
        'context_title': context.get('title') or '',
        'resource_link_id': resource_link['id'],
        'resource_link_title': resource_link.get('title') or '',
        'roles': list(claims.get(CLAIM_ROLES) or []),
        'custom_params': dict(claims.get(CLAIM_CUSTOM) or {}),
        'user_name': claims.get('name') or '',
        'user_email': email,
        'given_name': claims.get('given_name') or '',
        'family_name': claims.get('family_name') or '',
    }


def record_launch(claims: dict) -> LtiLaunch:
    launch = LtiLaunch.objects.create(**extract_launch_claims(claims))
    logger.info('LTI launch stored: %s', launch.id)
    return launch


def create_user_session(launch: LtiLaunch, timeout_hours=None) -> UserSession:
    hours = timeout_hours or getattr(settings, 'SESSION_TIMEOUT_HOURS', 1)
    now = timezone.now()
    session = UserSession.objects.create(
        user_id=launch.user_id,
        user_email=launch.user_email or launch.user_id,
        launch=launch,
        platform_id=launch.platform_id,
        context_id=launch.context_id,
        resource_link_id=launch.resource_link_id,
        roles=launch.roles,
        created_at=now,
        expires_at=now + timedelta(hours=hours),
    )
    logger.info('User session created: %s', session.id)
    return session


def cleanup_expired_sessions(now=None) -> int:
    now = now or timezone.now()
    deleted, _ = UserSession.objects.filter(expires_at__lt=now).delete()
    return deleted


def survey_embedded_data(launch: LtiLaunch) -> dict:
    """Embedded data handed to Qualtrics so completed responses can be matched back to the launch."""
    return {
        'userEmail': launch.user_id,
        'ltiUserId': launch.lms_user_id or '',
        'ltiContextId': launch.context_id,
        'ltiResourceId': launch.resource_link_id,
        'ltiLaunchId': str(launch.id),
        'courseName': launch.context_title or '',
        'userName': launch.user_name or '',
    }


def frontend_url(page: str, **params) -> str:
    base = settings.LTI.get('frontend_url') or ''
    return f"{base}/{page}?{urlencode(params)}"


def launch_destination(launch: LtiLaunch, session: UserSession, qualtrics=None):
    """Where a fresh launch should land.

    Returns a URL, or None when a student launches a resource with no survey attached.
    """
    from surveys.models import SurveyConfig

    survey = SurveyConfig.objects.active_for_resource(launch.context_id, launch.resource_link_id)

    if has_staff_role(launch.roles):
        if survey is None:
            return frontend_url('teacher-config.html', session=session.id,
                                context=launch.context_id, resource=launch.resource_link_id)
        return frontend_url('teacher-dashboard.html', session=session.id, survey=survey.id)

    if survey is None:
        return None

    if qualtrics is None:
        from qualtrics_integration.client import QualtricsClient
        qualtrics = QualtricsClient.from_settings()
    return qualtrics.build_sso_url(survey.qualtrics_survey_id, survey_embedded_data(launch))
