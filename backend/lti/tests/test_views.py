import uuid
from unittest import mock

from django.test import override_settings
from pylti1p3.exception import LtiException
from rest_framework import status
from rest_framework.test import APITestCase

from lti.models import LtiLaunch, UserSession
from surveys.models import SurveyConfig
from .helpers import INSTRUCTOR, launch_claims, make_instructor_session, make_session

QUALTRICS_SETTINGS = {
    'api_token': 'token',
    'base_url': 'https://iad1.qualtrics.com',
    'brand_id': None,
    'library_id': None,
    'webhook_secret': None,
}
LTI_SETTINGS = {'frontend_url': 'https://app.example.com', 'key_id': 'kid'}


class SessionAuthenticationTest(APITestCase):
    def test_missing_session_id(self):
        resp = self.client.get('/lti/app')
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(resp.json(), {'success': False, 'error': 'Session ID required'})

    def test_unknown_session(self):
        resp = self.client.get('/lti/app', HTTP_X_SESSION_ID=str(uuid.uuid4()))
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.json()['error'], 'Session not found')

    def test_malformed_session_id(self):
        resp = self.client.get('/lti/app', HTTP_X_SESSION_ID='not-a-uuid')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_expired_session(self):
        session = make_session(expired=True)
        resp = self.client.get('/lti/app', HTTP_X_SESSION_ID=str(session.id))
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(resp.json()['error'], 'Session expired')

    def test_instructor_app_view(self):
        session = make_instructor_session()
        resp = self.client.get('/lti/app', HTTP_X_SESSION_ID=str(session.id))
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        body = resp.json()
        self.assertEqual(body['userType'], 'instructor')
        self.assertEqual(body['sessionId'], str(session.id))
        self.assertEqual(body['contextId'], 'course-1')

    def test_session_id_from_query_string(self):
        session = make_session()
        resp = self.client.get('/lti/app', {'sessionId': str(session.id)})
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['userType'], 'student')


class SessionDetailViewTest(APITestCase):
    def test_session_summary(self):
        session = make_session()
        resp = self.client.get(f'/lti/session/{session.id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        data = resp.json()['data']
        self.assertEqual(data['sessionId'], str(session.id))
        self.assertEqual(data['userId'], 'student@example.edu')
        self.assertTrue(data['isActive'])

    def test_unknown_session(self):
        resp = self.client.get(f'/lti/session/{uuid.uuid4()}')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)

    def test_expired_session(self):
        session = make_session(expired=True)
        resp = self.client.get(f'/lti/session/{session.id}')
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(resp.json(), {'success': False, 'error': 'Session expired'})


class PublicEndpointsTest(APITestCase):
    def test_health(self):
        resp = self.client.get('/health')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['status'], 'healthy')

    def test_help_lists_endpoints(self):
        resp = self.client.get('/lti/help')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        body = resp.json()
        self.assertEqual(body['status'], 'ready')
        self.assertEqual(body['ltiVersion'], '1.3')
        self.assertTrue(body['endpoints']['launch'].endswith('/lti/launch'))
        self.assertTrue(body['endpoints']['jwks'].endswith('/lti/keys'))


@override_settings(QUALTRICS=QUALTRICS_SETTINGS, LTI=LTI_SETTINGS)
class LaunchViewTest(APITestCase):
    def setUp(self):
        patcher = mock.patch('lti.views.DjangoMessageLaunch')
        self.message_launch_cls = patcher.start()
        self.addCleanup(patcher.stop)
        for name in ('get_tool_config', 'get_launch_data_storage'):
            p = mock.patch(f'lti.views.{name}')
            p.start()
            self.addCleanup(p.stop)

        self.message_launch = self.message_launch_cls.return_value
        self.message_launch.is_deep_link_launch.return_value = False

    def _launch(self, claims):
        self.message_launch.get_launch_data.return_value = claims
        return self.client.post('/lti/launch', {'id_token': 'token', 'state': 'state'})

    def test_student_redirected_to_survey(self):
        SurveyConfig.objects.create(instructor_id='teacher@example.edu', context_id='course-1',
                                    resource_link_id='link-1', qualtrics_survey_id='SV_abc')
        resp = self._launch(launch_claims())
        self.assertEqual(resp.status_code, 302)
        self.assertTrue(resp['Location'].startswith('https://iad1.qualtrics.com/jfe/form/SV_abc?'))
        self.assertEqual(LtiLaunch.objects.count(), 1)
        self.assertEqual(UserSession.objects.count(), 1)

    def test_student_without_survey(self):
        resp = self._launch(launch_claims())
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.content.decode(), 'Survey not configured. Please contact your instructor.')

    def test_instructor_redirected_to_config_page(self):
        resp = self._launch(launch_claims(email='teacher@example.edu', **{
            'https://purl.imsglobal.org/spec/lti/claim/roles': [INSTRUCTOR],
        }))
        self.assertEqual(resp.status_code, 302)
        self.assertTrue(resp['Location'].startswith('https://app.example.com/teacher-config.html?'))
        session = UserSession.objects.get()
        self.assertIn(f'session={session.id}', resp['Location'])

    def test_missing_email_rejected(self):
        claims = launch_claims()
        del claims['email']
        resp = self._launch(claims)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(LtiLaunch.objects.count(), 0)

    def test_invalid_launch(self):
        self.message_launch.get_launch_data.side_effect = LtiException('bad token')
        resp = self.client.post('/lti/launch', {'id_token': 'token'})
        self.assertEqual(resp.status_code, 401)

    def test_deep_link_launch(self):
        self.message_launch.is_deep_link_launch.return_value = True
        self.message_launch.get_deep_link.return_value.output_response_form.return_value = '<form>dl</form>'
        resp = self._launch(launch_claims(**{
            'https://purl.imsglobal.org/spec/lti-dl/claim/deep_linking_settings': {
                'deep_link_return_url': 'https://buzz.example.com/dl',
            },
        }))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.content.decode(), '<form>dl</form>')
        resources = self.message_launch.get_deep_link.return_value.output_response_form.call_args[0][0]
        self.assertEqual(len(resources), 1)
        self.assertEqual(LtiLaunch.objects.count(), 0)

    def test_deep_link_without_settings(self):
        self.message_launch.is_deep_link_launch.return_value = True
        resp = self._launch(launch_claims())
        self.assertEqual(resp.status_code, 400)

    def test_get_not_allowed(self):
        resp = self.client.get('/lti/launch')
        self.assertEqual(resp.status_code, 405)
