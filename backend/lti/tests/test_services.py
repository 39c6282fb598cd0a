from datetime import timedelta
from unittest import mock

from django.test import TestCase, override_settings
from django.utils import timezone

from lti.models import LtiLaunch, UserSession
from lti.services import (
    LaunchError, cleanup_expired_sessions, create_user_session, extract_launch_claims, has_staff_role,
    launch_destination, record_launch, survey_embedded_data,
)
from qualtrics_integration.client import QualtricsClient
from surveys.models import SurveyConfig
from .helpers import INSTRUCTOR, LEARNER, launch_claims, make_launch, make_session


class StaffRoleTest(TestCase):
    def test_instructor_and_assistant_roles_are_staff(self):
        self.assertTrue(has_staff_role([INSTRUCTOR]))
        self.assertTrue(has_staff_role(['http://purl.imsglobal.org/vocab/lis/v2/membership/Instructor#TeachingAssistant']))
        self.assertTrue(has_staff_role(['Administrator']))

    def test_learner_is_not_staff(self):
        self.assertFalse(has_staff_role([LEARNER]))
        self.assertFalse(has_staff_role([]))
        self.assertFalse(has_staff_role(None))


class LaunchClaimsTest(TestCase):
    def test_extracts_identity_from_email(self):
        data = extract_launch_claims(launch_claims())
        self.assertEqual(data['user_id'], 'student@example.edu')
        self.assertEqual(data['lms_user_id'], 'lms-user-42')
        self.assertEqual(data['context_id'], 'course-1')
        self.assertEqual(data['resource_link_id'], 'link-1')
        self.assertEqual(data['context_title'], 'Biology 101')
        self.assertEqual(data['roles'], [LEARNER])

    def test_email_is_required(self):
        claims = launch_claims()
        del claims['email']
        with self.assertRaises(LaunchError):
            extract_launch_claims(claims)

    def test_record_launch_stores_row(self):
        launch = record_launch(launch_claims())
        self.assertEqual(LtiLaunch.objects.count(), 1)
        self.assertEqual(launch.user_email, 'student@example.edu')
        self.assertEqual(launch.platform_id, 'https://buzz.example.com')


class SessionLifecycleTest(TestCase):
    def test_session_expires_after_timeout(self):
        session = create_user_session(make_launch(), timeout_hours=2)
        self.assertEqual(session.expires_at - session.created_at, timedelta(hours=2))
        self.assertFalse(session.is_expired)
        self.assertEqual(session.context_id, 'course-1')

    @override_settings(SESSION_TIMEOUT_HOURS=3)
    def test_default_timeout_from_settings(self):
        session = create_user_session(make_launch())
        self.assertEqual(session.expires_at - session.created_at, timedelta(hours=3))

    def test_cleanup_deletes_only_expired(self):
        live = make_session()
        make_session(expired=True, user_id='other@example.edu')
        self.assertEqual(cleanup_expired_sessions(), 1)
        self.assertEqual(list(UserSession.objects.values_list('id', flat=True)), [live.id])

    def test_is_instructor(self):
        self.assertTrue(make_session(roles=[INSTRUCTOR]).is_instructor)
        self.assertFalse(make_session().is_instructor)


@override_settings(LTI={'frontend_url': 'https://app.example.com', 'key_id': 'kid'})
class LaunchDestinationTest(TestCase):
    def setUp(self):
        self.qualtrics = QualtricsClient(api_token='token', base_url='https://iad1.qualtrics.com',
                                         session=mock.Mock(headers={}))

    def _survey(self, **kwargs):
        defaults = {
            'instructor_id': 'teacher@example.edu',
            'context_id': 'course-1',
            'resource_link_id': 'link-1',
            'qualtrics_survey_id': 'SV_abc',
        }
        defaults.update(kwargs)
        return SurveyConfig.objects.create(**defaults)

    def test_instructor_without_survey_goes_to_config_page(self):
        launch = make_launch(user_id='teacher@example.edu', roles=[INSTRUCTOR])
        session = create_user_session(launch)
        url = launch_destination(launch, session, qualtrics=self.qualtrics)
        self.assertTrue(url.startswith('https://app.example.com/teacher-config.html?'))
        self.assertIn(f'session={session.id}', url)
        self.assertIn('context=course-1', url)
        self.assertIn('resource=link-1', url)

    def test_instructor_with_survey_goes_to_dashboard(self):
        survey = self._survey()
        launch = make_launch(user_id='teacher@example.edu', roles=[INSTRUCTOR])
        session = create_user_session(launch)
        url = launch_destination(launch, session, qualtrics=self.qualtrics)
        self.assertTrue(url.startswith('https://app.example.com/teacher-dashboard.html?'))
        self.assertIn(f'survey={survey.id}', url)

    def test_student_without_survey_has_no_destination(self):
        launch = make_launch()
        self.assertIsNone(launch_destination(launch, create_user_session(launch), qualtrics=self.qualtrics))

    def test_inactive_survey_is_ignored(self):
        self._survey(is_active=False)
        launch = make_launch()
        self.assertIsNone(launch_destination(launch, create_user_session(launch), qualtrics=self.qualtrics))

    def test_student_with_survey_gets_sso_url(self):
        self._survey()
        launch = make_launch()
        url = launch_destination(launch, create_user_session(launch), qualtrics=self.qualtrics)
        self.assertTrue(url.startswith('https://iad1.qualtrics.com/jfe/form/SV_abc?'))
        self.assertIn('userEmail=student%40example.edu', url)
        self.assertIn('ltiUserId=lms-user-42', url)
        self.assertIn(f'ltiLaunchId={launch.id}', url)

    def test_embedded_data_keys(self):
        launch = make_launch()
        self.assertEqual(
            set(survey_embedded_data(launch)),
            {'userEmail', 'ltiUserId', 'ltiContextId', 'ltiResourceId', 'ltiLaunchId', 'courseName', 'userName'},
        )
