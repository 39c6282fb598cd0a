from unittest import mock

import requests
from django.test import SimpleTestCase

from .client import QualtricsClient, QualtricsError, normalize_response


def fake_response(status_code=200, data=None):
    resp = mock.Mock(status_code=status_code, content=b'{}' if data is not None else b'', text='')
    resp.json.return_value = data
    return resp


RAW_RESPONSE = {
    'responseId': 'R_1',
    'surveyId': 'SV_abc',
    'recordedDate': '2024-05-01T10:00:00Z',
    'finished': 1,
    'progress': 100,
    'duration': 42,
    'values': {'userEmail': 'student@example.edu'},
}


class QualtricsClientTest(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock(headers={})
        self.qualtrics = QualtricsClient(api_token='token', base_url='https://iad1.qualtrics.com/',
                                         session=self.session)

    def test_token_header(self):
        self.assertEqual(self.session.headers['X-API-TOKEN'], 'token')
        self.assertEqual(self.qualtrics.api_url, 'https://iad1.qualtrics.com/API/v3')

    def test_normalize_response(self):
        response = normalize_response(RAW_RESPONSE)
        self.assertEqual(response['response_id'], 'R_1')
        self.assertTrue(response['finished'])
        self.assertEqual(response['values'], {'userEmail': 'student@example.edu'})
        self.assertFalse(normalize_response({'responseId': 'R_2', 'finished': 0})['finished'])

    def test_verify_survey(self):
        self.session.request.return_value = fake_response(200, {'result': {'id': 'SV_abc'}})
        self.assertTrue(self.qualtrics.verify_survey('SV_abc'))
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ('GET', 'https://iad1.qualtrics.com/API/v3/surveys/SV_abc'))

    def test_verify_survey_false_on_error(self):
        self.session.request.return_value = fake_response(404, {'meta': {'error': 'not found'}})
        self.assertFalse(self.qualtrics.verify_survey('SV_missing'))

    def test_transport_error_raises(self):
        self.session.request.side_effect = requests.ConnectionError('down')
        with self.assertRaises(QualtricsError):
            self.qualtrics.get_survey('SV_abc')

    def test_api_error_carries_status(self):
        self.session.request.return_value = fake_response(500, {'meta': {}})
        with self.assertRaises(QualtricsError) as ctx:
            self.qualtrics.get_survey('SV_abc')
        self.assertEqual(ctx.exception.status_code, 500)

    def test_create_survey_from_template(self):
        self.qualtrics.brand_id = 'brand'
        self.session.request.return_value = fake_response(200, {'result': {'SurveyID': 'SV_new'}})
        self.assertEqual(self.qualtrics.create_survey_from_template('SV_tpl', 'Exit poll', library_id='UR_1'),
                         'SV_new')
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ('POST', 'https://iad1.qualtrics.com/API/v3/survey-definitions'))
        payload = self.session.request.call_args[1]['json']
        self.assertEqual(payload['SurveyName'], 'Exit poll')
        self.assertEqual(payload['BrandId'], 'brand')
        self.assertEqual(payload['LibraryId'], 'UR_1')

    def test_create_survey_without_id(self):
        self.session.request.return_value = fake_response(200, {'result': {}})
        with self.assertRaises(QualtricsError):
            self.qualtrics.create_survey_from_template('SV_tpl', 'Exit poll')

    def test_update_survey_status(self):
        self.session.request.return_value = fake_response(200, {'meta': {}})
        self.assertTrue(self.qualtrics.update_survey_status('SV_abc', False))
        self.assertEqual(self.session.request.call_args[0][0], 'PUT')
        self.assertEqual(self.session.request.call_args[1]['json'], {'isActive': False})

        self.session.request.return_value = fake_response(403, {'meta': {}})
        self.assertFalse(self.qualtrics.update_survey_status('SV_abc', True))

    def test_delete_survey(self):
        self.session.request.return_value = fake_response(200, {'meta': {}})
        self.assertTrue(self.qualtrics.delete_survey('SV_abc'))
        method, url = self.session.request.call_args[0]
        self.assertEqual((method, url), ('DELETE', 'https://iad1.qualtrics.com/API/v3/surveys/SV_abc'))

        self.session.request.side_effect = requests.ConnectionError('down')
        self.assertFalse(self.qualtrics.delete_survey('SV_abc'))

    def test_create_distribution(self):
        self.session.request.return_value = fake_response(200, {'result': {'id': 'EMD_1'}})
        self.assertEqual(self.qualtrics.create_distribution('SV_abc', 'LTI Distribution - course-1'), 'EMD_1')
        payload = self.session.request.call_args[1]['json']
        self.assertEqual(payload['linkType'], 'Individual')
        self.assertTrue(payload['linkSecurityThreatProtection'])

    def test_create_distribution_without_id(self):
        self.session.request.return_value = fake_response(200, {'result': {}})
        with self.assertRaises(QualtricsError):
            self.qualtrics.create_distribution('SV_abc', 'desc')

    def test_survey_link_from_distribution(self):
        self.session.request.return_value = fake_response(200, {'result': {'link': 'https://q/link'}})
        link = self.qualtrics.generate_survey_link('SV_abc', 'EMD_1', {'userEmail': 'a@b.c'})
        self.assertEqual(link, 'https://q/link')
        embedded = self.session.request.call_args[1]['json']['embeddedData']
        self.assertEqual(embedded['source'], 'LTI')
        self.assertEqual(embedded['userEmail'], 'a@b.c')

    def test_survey_link_falls_back_to_form_url(self):
        self.session.request.return_value = fake_response(500, {})
        link = self.qualtrics.generate_survey_link('SV_abc', 'EMD_1', {'userEmail': 'a@b.c'})
        self.assertEqual(link, 'https://iad1.qualtrics.com/jfe/form/SV_abc?userEmail=a%40b.c')

    def test_survey_link_without_distribution(self):
        link = self.qualtrics.generate_survey_link('SV_abc', '', {})
        self.assertEqual(link, 'https://iad1.qualtrics.com/jfe/form/SV_abc')
        self.session.request.assert_not_called()

    def test_get_responses_reads_elements(self):
        self.session.request.return_value = fake_response(200, {'result': {'elements': [RAW_RESPONSE]}})
        responses = self.qualtrics.get_responses('SV_abc', start_date='2024-05-01T00:00:00Z', finished=True)
        self.assertEqual([r['response_id'] for r in responses], ['R_1'])
        params = self.session.request.call_args[1]['params']
        self.assertEqual(params, {'startDate': '2024-05-01T00:00:00Z', 'finished': 'true'})

    def test_get_survey_response_none_on_error(self):
        self.session.request.return_value = fake_response(404, {})
        self.assertIsNone(self.qualtrics.get_survey_response('SV_abc', 'R_x'))

    def test_distribution_history_empty_on_error(self):
        self.session.request.side_effect = requests.Timeout()
        self.assertEqual(self.qualtrics.get_distribution_history('SV_abc'), [])

    @mock.patch('qualtrics_integration.client.time.sleep')
    def test_export_polls_until_complete(self, sleep):
        self.session.request.side_effect = [
            fake_response(200, {'result': {'progressId': 'ES_1'}}),
            fake_response(200, {'result': {'status': 'inProgress'}}),
            fake_response(200, {'result': {'status': 'complete'}}),
            fake_response(200, {'result': {'downloadUrl': 'https://q/file.csv'}}),
        ]
        self.assertEqual(self.qualtrics.export_survey_responses('SV_abc'), 'https://q/file.csv')
        self.assertEqual(sleep.call_count, 2)

    @mock.patch('qualtrics_integration.client.time.sleep')
    def test_export_failure(self, sleep):
        self.session.request.side_effect = [
            fake_response(200, {'result': {'progressId': 'ES_1'}}),
            fake_response(200, {'result': {'status': 'failed'}}),
        ]
        with self.assertRaises(QualtricsError):
            self.qualtrics.export_survey_responses('SV_abc')
