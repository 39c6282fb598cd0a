import hashlib
import hmac
import json
from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from lti.tests.helpers import make_instructor_session, make_launch, make_session
from surveys.models import SurveyConfig
from .models import GradePassback
from .services import (
    ResponsePoller, calculate_grade, grade_from_progress, pass_back_grade, process_pending, record_grade,
    response_identity,
)

QUALTRICS_SETTINGS = {
    'api_token': 'token',
    'base_url': 'https://iad1.qualtrics.com',
    'brand_id': None,
    'library_id': None,
    'webhook_secret': None,
}


def make_survey(**kwargs):
    defaults = {
        'instructor_id': 'teacher@example.edu',
        'context_id': 'course-1',
        'resource_link_id': 'link-1',
        'qualtrics_survey_id': 'SV_abc',
        'max_grade': 100,
    }
    defaults.update(kwargs)
    return SurveyConfig.objects.create(**defaults)


def qualtrics_response(response_id='R_1', finished=True, progress=100, **values):
    return {
        'response_id': response_id,
        'survey_id': 'SV_abc',
        'recorded': '2024-05-01T10:00:00Z',
        'finished': finished,
        'progress': progress,
        'duration': 30,
        'values': values,
    }


class GradeRulesTest(TestCase):
    def test_completion_gives_max_grade(self):
        survey = make_survey(scoring_type='completion', max_grade=20)
        self.assertEqual(calculate_grade(survey, qualtrics_response()), 20)

    def test_percentage_uses_score(self):
        survey = make_survey(scoring_type='percentage', max_grade=20)
        self.assertEqual(calculate_grade(survey, qualtrics_response(score=75)), 15)
        self.assertEqual(calculate_grade(survey, qualtrics_response()), 0)

    def test_non_numeric_score_gives_zero(self):
        survey = make_survey(scoring_type='percentage', max_grade=20)
        self.assertEqual(calculate_grade(survey, qualtrics_response(score='N/A')), 0)

    def test_manual_gives_zero(self):
        survey = make_survey(scoring_type='manual')
        self.assertEqual(calculate_grade(survey, qualtrics_response()), 0)

    def test_progress_rule(self):
        survey = make_survey(max_grade=10)
        self.assertEqual(grade_from_progress(survey, qualtrics_response(finished=True, progress=30)), 10)
        self.assertEqual(grade_from_progress(survey, qualtrics_response(finished=False, progress=60)), 6)
        self.assertEqual(grade_from_progress(survey, qualtrics_response(finished=False, progress=50)), 0)

    def test_response_identity_prefers_email(self):
        self.assertEqual(response_identity({'userEmail': 'a@b.c', 'ltiUserId': 'lms-1'}), ('a@b.c', 'lms-1'))
        self.assertEqual(response_identity({'QID_userId': 'q-1'}), ('q-1', ''))
        self.assertEqual(response_identity({}), (None, ''))


class RecordGradeTest(TestCase):
    def setUp(self):
        self.survey = make_survey()

    def test_records_once_per_response(self):
        first, created = record_grade(self.survey, 'R_1', 'student@example.edu', 100)
        self.assertTrue(created)
        second, created = record_grade(self.survey, 'R_1', 'student@example.edu', 50)
        self.assertFalse(created)
        self.assertEqual(second.id, first.id)
        self.assertEqual(GradePassback.objects.count(), 1)

    def test_concurrent_insert_returns_existing(self):
        existing, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 100)
        # Simulate the other ingestion path inserting between our check and our insert
        with mock.patch.object(GradePassback.objects, 'filter') as filter_:
            filter_.return_value.first.return_value = None
            record, created = record_grade(self.survey, 'R_1', 'student@example.edu', 100)
        self.assertFalse(created)
        self.assertEqual(record.id, existing.id)

    def test_lms_user_id_taken_from_launch(self):
        launch = make_launch()
        record, _ = record_grade(self.survey, 'R_2', 'student@example.edu', 100, lti_launch=launch)
        self.assertEqual(record.lms_user_id, 'lms-user-42')
        self.assertEqual(record.max_grade, 100)


class ResponsePollerTest(TestCase):
    def setUp(self):
        self.qualtrics = mock.Mock()
        self.poller = ResponsePoller(qualtrics=self.qualtrics)

    def test_creates_pending_records(self):
        survey = make_survey(max_grade=10)
        launch = make_launch()
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_1', userEmail='student@example.edu', ltiUserId='lms-user-42',
                               ltiLaunchId=str(launch.id)),
        ]
        self.assertEqual(self.poller.poll_survey(survey), 1)
        record = GradePassback.objects.get()
        self.assertEqual(record.user_id, 'student@example.edu')
        self.assertEqual(record.lms_user_id, 'lms-user-42')
        self.assertEqual(record.lti_launch, launch)
        self.assertEqual(record.grade, 10)
        self.assertFalse(record.processed)
        survey.refresh_from_db()
        self.assertIsNotNone(survey.last_poll_time)

    def test_polls_since_last_poll_time(self):
        last = timezone.now() - timedelta(minutes=5)
        survey = make_survey(last_poll_time=last)
        self.qualtrics.get_responses.return_value = []
        self.poller.poll_survey(survey)
        self.qualtrics.get_responses.assert_called_once_with('SV_abc', start_date=last.isoformat(), finished=True)

    def test_launch_found_without_launch_id(self):
        survey = make_survey()
        launch = make_launch()
        self.qualtrics.get_responses.return_value = [qualtrics_response('R_1', userEmail='student@example.edu')]
        self.poller.poll_survey(survey)
        self.assertEqual(GradePassback.objects.get().lti_launch, launch)

    def test_skips_known_and_anonymous_responses(self):
        survey = make_survey()
        record_grade(survey, 'R_1', 'student@example.edu', 100)
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_1', userEmail='student@example.edu'),
            qualtrics_response('R_2'),
        ]
        self.assertEqual(self.poller.poll_survey(survey), 0)
        self.assertEqual(GradePassback.objects.count(), 1)

    def test_single_response_per_user(self):
        survey = make_survey()
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_1', userEmail='student@example.edu'),
            qualtrics_response('R_2', userEmail='student@example.edu'),
        ]
        self.assertEqual(self.poller.poll_survey(survey), 1)

    def test_multiple_responses_allowed(self):
        survey = make_survey(allow_multiple_responses=True)
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_1', userEmail='student@example.edu'),
            qualtrics_response('R_2', userEmail='student@example.edu'),
        ]
        self.assertEqual(self.poller.poll_survey(survey), 2)

    def test_bad_score_does_not_block_other_responses(self):
        survey = make_survey(scoring_type='percentage', max_grade=10)
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_bad', userEmail='first@example.edu', score='N/A'),
            qualtrics_response('R_good', userEmail='second@example.edu', score='80'),
        ]
        self.assertEqual(self.poller.poll_all(), {'surveys': 1, 'created': 2, 'failed': 0})
        self.assertEqual(GradePassback.objects.get(qualtrics_response_id='R_bad').grade, 0)
        self.assertEqual(GradePassback.objects.get(qualtrics_response_id='R_good').grade, 8)
        survey.refresh_from_db()
        self.assertIsNotNone(survey.last_poll_time)

    def test_failed_response_does_not_block_the_rest(self):
        survey = make_survey()
        self.qualtrics.get_responses.return_value = [
            qualtrics_response('R_1', userEmail='first@example.edu'),
            qualtrics_response('R_2', userEmail='second@example.edu'),
        ]
        with mock.patch('grade_passback.services.find_launch', side_effect=[RuntimeError('boom'), None]):
            self.assertEqual(self.poller.poll_survey(survey), 1)
        self.assertEqual(list(GradePassback.objects.values_list('qualtrics_response_id', flat=True)), ['R_2'])

    def test_failure_does_not_stop_other_surveys(self):
        broken = make_survey(qualtrics_survey_id='SV_broken')
        make_survey(qualtrics_survey_id='SV_ok', resource_link_id='link-2')
        make_survey(qualtrics_survey_id='SV_off', grade_passback_enabled=False)

        def get_responses(survey_id, **kwargs):
            if survey_id == 'SV_broken':
                raise RuntimeError('boom')
            return [qualtrics_response(f'R_{survey_id}', userEmail='student@example.edu')]

        self.qualtrics.get_responses.side_effect = get_responses
        stats = self.poller.poll_all()
        self.assertEqual(stats, {'surveys': 2, 'created': 1, 'failed': 1})
        broken.refresh_from_db()
        self.assertIsNone(broken.last_poll_time)


class PassbackTest(TestCase):
    def setUp(self):
        self.survey = make_survey()
        self.agilix = mock.Mock()
        self.agilix.passback_grade.return_value = True

    def test_requires_launch(self):
        record, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 100)
        self.assertFalse(pass_back_grade(record, agilix=self.agilix))
        self.agilix.passback_grade.assert_not_called()

    def test_sends_lms_user_id(self):
        record, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 80, lti_launch=make_launch())
        self.assertTrue(pass_back_grade(record, agilix=self.agilix))
        kwargs = self.agilix.passback_grade.call_args[1]
        self.assertEqual(kwargs['user_id'], 'lms-user-42')
        self.assertEqual(kwargs['context_id'], 'course-1')
        self.assertEqual(kwargs['resource_link_id'], 'link-1')
        self.assertEqual((kwargs['grade'], kwargs['max_grade']), (80, 100))

    def test_falls_back_to_email(self):
        launch = make_launch(lms_user_id='')
        record, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 80, lti_launch=launch)
        pass_back_grade(record, agilix=self.agilix)
        self.assertEqual(self.agilix.passback_grade.call_args[1]['user_id'], 'student@example.edu')

    def test_process_pending(self):
        launch = make_launch()
        ok, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 80, lti_launch=launch)
        failing, _ = record_grade(self.survey, 'R_2', 'other@example.edu', 80, lti_launch=launch)
        GradePassback.objects.filter(pk=failing.pk).update(timestamp=ok.timestamp + timedelta(seconds=1))
        self.agilix.passback_grade.side_effect = [True, False]
        self.assertEqual(process_pending(agilix=self.agilix), {'processed': 1, 'total': 2})
        ok.refresh_from_db()
        failing.refresh_from_db()
        self.assertTrue(ok.processed)
        self.assertIsNotNone(ok.processed_at)
        self.assertFalse(failing.processed)
        self.assertEqual(failing.error, 'Failed to pass back to Agilix')


class OnCreateSignalTest(TestCase):
    @mock.patch('grade_passback.signals.process_record')
    def test_disabled_by_default(self, process_record):
        with self.captureOnCommitCallbacks(execute=True):
            record_grade(make_survey(), 'R_1', 'student@example.edu', 100)
        process_record.assert_not_called()

    @override_settings(GRADE_PASSBACK_ON_CREATE=True)
    @mock.patch('grade_passback.signals.process_record')
    def test_passes_back_after_commit(self, process_record):
        with self.captureOnCommitCallbacks(execute=True):
            record, _ = record_grade(make_survey(), 'R_1', 'student@example.edu', 100)
        process_record.assert_called_once_with(record)


@override_settings(QUALTRICS=QUALTRICS_SETTINGS)
class ProcessCompletionViewTest(APITestCase):
    url = '/grades/process-completion'
    body = {'responseId': 'R_1', 'surveyId': 'SV_abc', 'userId': 'student@example.edu',
            'contextId': 'course-1', 'resourceLinkId': 'link-1'}

    def setUp(self):
        patcher = mock.patch('grade_passback.views.QualtricsClient')
        self.qualtrics = patcher.start().from_settings.return_value
        self.addCleanup(patcher.stop)
        self.qualtrics.get_survey_response.return_value = qualtrics_response(finished=False, progress=80)

    def test_missing_fields(self):
        resp = self.client.post(self.url, {'responseId': 'R_1'}, format='json')
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(resp.json()['error'], 'Missing required fields: responseId, surveyId, userId')

    def test_unknown_survey(self):
        resp = self.client.post(self.url, self.body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.json()['error'], 'Survey configuration not found')

    def test_passback_disabled(self):
        make_survey(grade_passback_enabled=False)
        resp = self.client.post(self.url, self.body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['message'], 'Grade passback is disabled for this survey')
        self.assertFalse(GradePassback.objects.exists())

    def test_response_not_found(self):
        make_survey()
        self.qualtrics.get_survey_response.return_value = None
        resp = self.client.post(self.url, self.body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.json()['error'], 'Survey response not found')

    def test_creates_record_from_progress(self):
        make_survey(max_grade=10)
        launch = make_launch()
        resp = self.client.post(self.url, self.body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['message'], 'Grade passback created successfully')
        record = GradePassback.objects.get()
        self.assertEqual(record.grade, 8)
        self.assertEqual(record.user_email, 'student@example.edu')
        self.assertEqual(record.lti_launch, launch)
        self.qualtrics.get_survey_response.assert_called_once_with('SV_abc', 'R_1')

    def test_duplicate_returns_existing(self):
        survey = make_survey()
        existing, _ = record_grade(survey, 'R_1', 'student@example.edu', 100)
        resp = self.client.post(self.url, self.body, format='json')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['data']['id'], str(existing.id))
        self.assertEqual(GradePassback.objects.count(), 1)
        self.qualtrics.get_survey_response.assert_not_called()

    @override_settings(QUALTRICS=dict(QUALTRICS_SETTINGS, webhook_secret='shh'))
    def test_signature_required_when_secret_set(self):
        make_survey()
        payload = json.dumps(self.body)
        resp = self.client.post(self.url, payload, content_type='application/json',
                                HTTP_X_QUALTRICS_SIGNATURE='bogus')
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

        signature = hmac.new(b'shh', payload.encode(), hashlib.sha256).hexdigest()
        resp = self.client.post(self.url, payload, content_type='application/json',
                                HTTP_X_QUALTRICS_SIGNATURE=signature)
        self.assertEqual(resp.status_code, status.HTTP_200_OK)


class GradeEndpointsTest(APITestCase):
    def setUp(self):
        self.instructor = make_instructor_session()
        self.survey = make_survey()
        self.launch = make_launch()
        self.record, _ = record_grade(self.survey, 'R_1', 'student@example.edu', 90, lti_launch=self.launch)

    def _as(self, session):
        self.client.credentials(HTTP_X_SESSION_ID=str(session.id))

    def test_survey_grades_for_owner(self):
        self._as(self.instructor)
        resp = self.client.get(f'/grades/survey/{self.survey.id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        data = resp.json()['data']
        self.assertEqual([g['qualtricsResponseId'] for g in data], ['R_1'])
        self.assertEqual(data[0]['ltiLaunchId'], str(self.launch.id))

    def test_survey_grades_other_instructor(self):
        self._as(make_instructor_session(user_id='other@example.edu'))
        resp = self.client.get(f'/grades/survey/{self.survey.id}')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.json()['error'], 'Access denied')

    def test_survey_grades_students_forbidden(self):
        self._as(make_session())
        resp = self.client.get(f'/grades/survey/{self.survey.id}')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(resp.json()['error'], 'Instructor role required')

    def test_user_grades_own_only(self):
        self._as(make_session())
        resp = self.client.get('/grades/user/student@example.edu')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(len(resp.json()['data']), 1)
        resp = self.client.get('/grades/user/other@example.edu')
        self.assertEqual(resp.status_code, status.HTTP_403_FORBIDDEN)

    def test_instructor_reads_any_user(self):
        self._as(self.instructor)
        resp = self.client.get('/grades/user/student@example.edu')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)

    @mock.patch('grade_passback.views.pass_back_grade', return_value=True)
    def test_manual_passback(self, pass_back):
        self._as(self.instructor)
        resp = self.client.post(f'/grades/passback/{self.record.id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.record.refresh_from_db()
        self.assertTrue(self.record.processed)

    @mock.patch('grade_passback.views.pass_back_grade', return_value=False)
    def test_manual_passback_failure(self, pass_back):
        self._as(self.instructor)
        resp = self.client.post(f'/grades/passback/{self.record.id}')
        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(resp.json()['error'], 'Failed to pass back grade')
        self.record.refresh_from_db()
        self.assertFalse(self.record.processed)

    @mock.patch('grade_passback.views.pass_back_grade', side_effect=RuntimeError('database unavailable'))
    def test_manual_passback_unexpected_error(self, pass_back):
        self._as(self.instructor)
        resp = self.client.post(f'/grades/passback/{self.record.id}')
        self.assertEqual(resp.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(resp.json(), {'success': False, 'error': 'Failed to process grade passback'})

    def test_manual_passback_unknown_record(self):
        self._as(self.instructor)
        resp = self.client.post('/grades/passback/not-a-uuid')
        self.assertEqual(resp.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(resp.json()['error'], 'Grade record not found')

    @mock.patch('grade_passback.services.AgilixClient')
    def test_bulk_passback(self, agilix_cls):
        record_grade(self.survey, 'R_2', 'other@example.edu', 50, lti_launch=self.launch)
        agilix_cls.from_settings.return_value.passback_grade.side_effect = [True, False]
        self._as(self.instructor)
        resp = self.client.post(f'/grades/bulk-passback/{self.survey.id}')
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.json()['data'], {'processed': 1, 'total': 2})
        self.assertEqual(GradePassback.objects.filter(processed=True).count(), 1)
        self.assertEqual(GradePassback.objects.exclude(error='').count(), 1)

    def test_bulk_passback_nothing_pending(self):
        self.record.mark_processed()
        self._as(self.instructor)
        resp = self.client.post(f'/grades/bulk-passback/{self.survey.id}')
        self.assertEqual(resp.json()['data'], {'processed': 0})
        self.assertEqual(resp.json()['message'], 'No grades to process')

    def test_submission_status(self):
        self._as(make_session())
        resp = self.client.get(f'/grades/submission-status/{self.survey.id}')
        data = resp.json()['data']
        self.assertTrue(data['submitted'])
        self.assertEqual(data['grade'], 90)
        self.assertEqual(data['responseId'], 'R_1')

        self._as(make_session(user_id='new@example.edu'))
        resp = self.client.get(f'/grades/submission-status/{self.survey.id}')
        self.assertEqual(resp.json()['data'], {'submitted': False, 'message': 'No submission found'})


class GradeCommandsTest(TestCase):
    @mock.patch('grade_passback.management.commands.poll_qualtrics_responses.ResponsePoller')
    def test_poll_command(self, poller_cls):
        poller_cls.return_value.poll_all.return_value = {'surveys': 2, 'created': 3, 'failed': 0}
        out = StringIO()
        call_command('poll_qualtrics_responses', stdout=out)
        self.assertIn('Polled 2 survey(s): 3 grade record(s) created', out.getvalue())

    @mock.patch('grade_passback.services.AgilixClient')
    def test_process_command_oldest_first(self, agilix_cls):
        survey = make_survey()
        launch = make_launch()
        older, _ = record_grade(survey, 'R_old', 'a@example.edu', 10, lti_launch=launch)
        GradePassback.objects.filter(pk=older.pk).update(timestamp=timezone.now() - timedelta(days=1))
        record_grade(survey, 'R_new', 'b@example.edu', 10, lti_launch=launch)
        agilix_cls.from_settings.return_value.passback_grade.return_value = True

        out = StringIO()
        call_command('process_grade_passbacks', limit=1, stdout=out)
        self.assertIn('Processed 1 out of 1 grades', out.getvalue())
        older.refresh_from_db()
        self.assertTrue(older.processed)
