import uuid
from unittest import mock

from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from lti.tests.helpers import make_instructor_session, make_session
from qualtrics_integration.client import QualtricsError
from .models import SurveyConfig


def make_survey(**kwargs):
    defaults = {
        'instructor_id': 'teacher@example.edu',
        'context_id': 'course-1',
        'resource_link_id': 'link-1',
        'qualtrics_survey_id': 'SV_abc',
        'qualtrics_distribution_id': 'EMD_1',
        'survey_name': 'Unit survey',
    }
    defaults.update(kwargs)
    return SurveyConfig.objects.create(**defaults)


class SurveyConfigModelTest(TestCase):
    @override_settings(MAX_GRADE_DEFAULT=50)
    def test_defaults(self):
        survey = SurveyConfig.objects.create(instructor_id='t', context_id='c', resource_link_id='r',
                                             qualtrics_survey_id='SV_1')
        self.assertEqual(survey.survey_name, 'Untitled Survey')
        self.assertTrue(survey.is_active)
        self.assertTrue(survey.grade_passback_enabled)
        self.assertFalse(survey.allow_multiple_responses)
        self.assertEqual(survey.scoring_type, 'completion')
        self.assertEqual(survey.max_grade, 50)

    def test_active_for_resource(self):
        make_survey(is_active=False)
        active = make_survey()
        make_survey(resource_link_id='link-2')
        self.assertEqual(SurveyConfig.objects.active_for_resource('course-1', 'link-1'), active)
        self.assertIsNone(SurveyConfig.objects.active_for_resource('course-2', 'link-1'))


class SurveyReadTest(APITestCase):
    def setUp(self):
        self.session = make_session()
        self.client.credentials(HTTP_X_SESSION_ID=str(self.session.id))

    def test_list_only_active_in_context(self):
        mine = make_survey()
        make_survey(is_active=False)
        make_survey(context_id='course-2')
        resp = self.client.get('/surveys/')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        body = resp.json()
        self.assertTrue(body['success'])
        self.assertEqual([s['id'] for s in body['data']], [str(mine.id)])

    def test_retrieve_shape(self):
        survey = make_survey(max_grade=10, scoring_type='percentage')
        resp = self.client.get(f'/surveys/{survey.id}/')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        data = resp.json()['data']
        self.assertEqual(data['qualtricsDetails']['surveyId'], 'SV_abc')
        self.assertEqual(data['qualtricsDetails']['distributionId'], 'EMD_1')
        self.assertEqual(data['settings']['maxGrade'], 10)
        self.assertEqual(data['settings']['scoringType'], 'percentage')
        self.assertEqual(data['instructorId'], 'teacher@example.edu')

    def test_retrieve_unknown(self):
        resp = self.client.get(f'/surveys/{uuid.uuid4()}/')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.json()['error'], 'Survey not found')

    def test_retrieve_other_context(self):
        survey = make_survey(context_id='course-2')
        resp = self.client.get(f'/surveys/{survey.id}/')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.json()['error'], 'Access denied')

    def test_requires_session(self):
        self.client.credentials()
        resp = self.client.get('/surveys/')
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)


class SurveyWriteTest(APITestCase):
    def setUp(self):
        self.session = make_instructor_session()
        self.client.credentials(HTTP_X_SESSION_ID=str(self.session.id))
        patcher = mock.patch('surveys.views.QualtricsClient')
        self.qualtrics = patcher.start().from_settings.return_value
        self.addCleanup(patcher.stop)
        self.qualtrics.verify_survey.return_value = True
        self.qualtrics.create_distribution.return_value = 'EMD_new'

    def test_create_applies_defaults_and_distribution(self):
        resp = self.client.post('/surveys/', {'qualtricsDetails': {'surveyId': 'SV_abc'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        body = resp.json()
        self.assertEqual(body['message'], 'Survey configuration created successfully')
        survey = SurveyConfig.objects.get()
        self.assertEqual(survey.instructor_id, 'teacher@example.edu')
        self.assertEqual(survey.context_id, 'course-1')
        self.assertEqual(survey.resource_link_id, 'link-1')
        self.assertEqual(survey.qualtrics_distribution_id, 'EMD_new')
        self.assertEqual(survey.survey_name, 'Untitled Survey')
        self.qualtrics.create_distribution.assert_called_once_with('SV_abc', 'LTI Distribution - course-1')

    def test_create_with_settings_and_distribution(self):
        resp = self.client.post('/surveys/', {
            'qualtricsDetails': {'surveyId': 'SV_abc', 'distributionId': 'EMD_given'},
            'settings': {'surveyName': 'Exit poll', 'maxGrade': 20, 'scoringType': 'manual'},
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        survey = SurveyConfig.objects.get()
        self.assertEqual(survey.qualtrics_distribution_id, 'EMD_given')
        self.assertEqual(survey.survey_name, 'Exit poll')
        self.assertEqual(survey.max_grade, 20)
        self.qualtrics.create_distribution.assert_not_called()

    def test_create_requires_survey_id(self):
        resp = self.client.post('/surveys/', {'settings': {'surveyName': 'x'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.json()['error'], 'Qualtrics survey ID is required')

    def test_create_unknown_qualtrics_survey(self):
        self.qualtrics.verify_survey.return_value = False
        resp = self.client.post('/surveys/', {'qualtricsDetails': {'surveyId': 'SV_nope'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.json()['error'], 'Survey not found in Qualtrics')
        self.assertFalse(SurveyConfig.objects.exists())

    def test_create_distribution_failure(self):
        self.qualtrics.create_distribution.side_effect = QualtricsError('boom')
        resp = self.client.post('/surveys/', {'qualtricsDetails': {'surveyId': 'SV_abc'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertFalse(SurveyConfig.objects.exists())

    def test_students_cannot_create(self):
        student = make_session(user_id='student2@example.edu')
        self.client.credentials(HTTP_X_SESSION_ID=str(student.id))
        resp = self.client.post('/surveys/', {'qualtricsDetails': {'surveyId': 'SV_abc'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.json()['error'], 'Instructor role required')

    def test_update_settings(self):
        survey = make_survey()
        resp = self.client.put(f'/surveys/{survey.id}/', {
            'settings': {'gradePassbackEnabled': False, 'allowMultipleResponses': True},
        }, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        survey.refresh_from_db()
        self.assertFalse(survey.grade_passback_enabled)
        self.assertTrue(survey.allow_multiple_responses)
        self.assertEqual(survey.qualtrics_survey_id, 'SV_abc')

    def test_update_cannot_change_owner_or_context(self):
        survey = make_survey()
        self.client.put(f'/surveys/{survey.id}/', {
            'instructorId': 'someone@else.edu', 'contextId': 'course-9',
        }, format='json')
        survey.refresh_from_db()
        self.assertEqual(survey.instructor_id, 'teacher@example.edu')
        self.assertEqual(survey.context_id, 'course-1')

    def test_update_by_other_instructor(self):
        survey = make_survey(instructor_id='other@example.edu')
        resp = self.client.put(f'/surveys/{survey.id}/', {'settings': {'surveyName': 'x'}}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_delete_is_soft(self):
        survey = make_survey()
        resp = self.client.delete(f'/surveys/{survey.id}/')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        survey.refresh_from_db()
        self.assertFalse(survey.is_active)

    def test_responses(self):
        survey = make_survey()
        self.qualtrics.get_survey_responses.return_value = [{'response_id': 'R_1'}]
        resp = self.client.get(f'/surveys/{survey.id}/responses/')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['data'], [{'response_id': 'R_1'}])
        self.qualtrics.get_survey_responses.assert_called_once_with('SV_abc')

    def test_responses_failure(self):
        survey = make_survey()
        self.qualtrics.get_survey_responses.side_effect = QualtricsError('boom')
        resp = self.client.get(f'/surveys/{survey.id}/responses/')
        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(resp.json()['error'], 'Failed to fetch survey responses')


class SurveyLinkTest(APITestCase):
    def setUp(self):
        self.session = make_session()
        self.client.credentials(HTTP_X_SESSION_ID=str(self.session.id))
        patcher = mock.patch('surveys.views.QualtricsClient')
        self.qualtrics = patcher.start().from_settings.return_value
        self.addCleanup(patcher.stop)
        self.qualtrics.generate_survey_link.return_value = 'https://q/link'

    def test_link_embeds_launch_identity(self):
        survey = make_survey()
        resp = self.client.post(f'/surveys/{survey.id}/link/')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['data'], {'surveyLink': 'https://q/link'})
        survey_id, distribution_id, embedded = self.qualtrics.generate_survey_link.call_args[0]
        self.assertEqual((survey_id, distribution_id), ('SV_abc', 'EMD_1'))
        self.assertEqual(embedded['userEmail'], 'student@example.edu')
        self.assertEqual(embedded['ltiContextId'], 'course-1')
        self.assertEqual(embedded['ltiResourceId'], 'link-1')

    def test_inactive_survey_not_accessible(self):
        survey = make_survey(is_active=False)
        resp = self.client.post(f'/surveys/{survey.id}/link/')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.json()['error'], 'Survey not accessible')

    def test_other_context_not_accessible(self):
        survey = make_survey(context_id='course-2')
        resp = self.client.post(f'/surveys/{survey.id}/link/')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
