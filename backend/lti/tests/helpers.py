from datetime import timedelta

from django.utils import timezone

from lti.models import LtiLaunch
from lti.services import (
    CLAIM_CONTEXT, CLAIM_CUSTOM, CLAIM_DEPLOYMENT_ID, CLAIM_RESOURCE_LINK, CLAIM_ROLES, create_user_session,
)

INSTRUCTOR = 'http://purl.imsglobal.org/vocab/lis/v2/membership#Instructor'
LEARNER = 'http://purl.imsglobal.org/vocab/lis/v2/membership#Learner'
ISSUER = 'https://buzz.example.com'


def launch_claims(**overrides):
    claims = {
        'iss': ISSUER,
        'sub': 'lms-user-42',
        'email': 'student@example.edu',
        'name': 'Sam Student',
        'given_name': 'Sam',
        'family_name': 'Student',
        CLAIM_DEPLOYMENT_ID: 'deployment-1',
        CLAIM_CONTEXT: {'id': 'course-1', 'title': 'Biology 101'},
        CLAIM_RESOURCE_LINK: {'id': 'link-1', 'title': 'End of unit survey'},
        CLAIM_ROLES: [LEARNER],
        CLAIM_CUSTOM: {},
    }
    claims.update(overrides)
    return claims


def make_launch(user_id='student@example.edu', roles=None, context_id='course-1', resource_link_id='link-1',
                lms_user_id='lms-user-42'):
    return LtiLaunch.objects.create(
        user_id=user_id,
        user_email=user_id,
        lms_user_id=lms_user_id,
        platform_id=ISSUER,
        context_id=context_id,
        context_title='Biology 101',
        resource_link_id=resource_link_id,
        roles=roles if roles is not None else [LEARNER],
        user_name='Sam Student',
    )


def make_session(launch=None, expired=False, **launch_kwargs):
    session = create_user_session(launch or make_launch(**launch_kwargs))
    if expired:
        session.expires_at = timezone.now() - timedelta(minutes=1)
        session.save(update_fields=['expires_at'])
    return session


def make_instructor_session(user_id='teacher@example.edu', **kwargs):
    return make_session(user_id=user_id, roles=[INSTRUCTOR], **kwargs)
