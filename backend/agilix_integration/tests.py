from datetime import datetime, timezone as dt_timezone
from unittest import mock

import requests
from django.core.cache import cache
from django.test import SimpleTestCase

from .client import AgilixClient, AgilixError


def fake_response(status_code=200, data=None):
    resp = mock.Mock(status_code=status_code, content=b'{}', text='')
    resp.json.return_value = data if data is not None else {}
    return resp


LOGIN_OK = fake_response(200, {'response': {'code': 'OK', 'token': 'bearer-1'}})


class AgilixClientTest(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.session = mock.Mock(headers={})
        self.agilix = AgilixClient(domain='school', username='svc', password='pw',
                                   base_url='https://api.agilix.com/', session=self.session)

    def tearDown(self):
        cache.clear()

    def test_authenticate_caches_token(self):
        self.session.post.return_value = LOGIN_OK
        self.assertEqual(self.agilix.authenticate(), 'bearer-1')
        self.assertEqual(self.agilix.authenticate(), 'bearer-1')
        self.session.post.assert_called_once()
        url = self.session.post.call_args[0][0]
        self.assertEqual(url, 'https://api.agilix.com/auth/login')
        self.assertEqual(self.session.post.call_args[1]['json'],
                         {'domain': 'school', 'username': 'svc', 'password': 'pw'})

    def test_authenticate_without_token(self):
        self.session.post.return_value = fake_response(200, {'response': {'code': 'AccessDenied'}})
        with self.assertRaises(AgilixError):
            self.agilix.authenticate()

    def test_command_uses_bearer_token(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(200, {'response': {'code': 'OK', 'user': {}}})]
        self.agilix.get_user('u1')
        url = self.session.post.call_args[0][0]
        kwargs = self.session.post.call_args[1]
        self.assertEqual(url, 'https://api.agilix.com/cmd')
        self.assertEqual(kwargs['headers'], {'Authorization': 'Bearer bearer-1'})
        self.assertEqual(kwargs['json'], {'cmd': 'getuser', 'domain': 'school', 'userid': 'u1'})

    def test_passback_grade_ok(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(200, {'response': {'code': 'OK'}})]
        stamp = datetime(2024, 5, 1, 12, 0, tzinfo=dt_timezone.utc)
        self.assertTrue(self.agilix.passback_grade('lms-42', 'course-1', 'link-1', 80, 100, stamp))
        payload = self.session.post.call_args[1]['json']
        self.assertEqual(payload['cmd'], 'putgrades2')
        self.assertEqual(payload['userid'], 'lms-42')
        self.assertEqual(payload['grades'], [{'score': 80.0, 'maxscore': 100.0, 'timestamp': stamp.isoformat()}])

    def test_passback_grade_rejected(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(200, {'response': {'code': 'BadRequest'}})]
        self.assertFalse(self.agilix.passback_grade('lms-42', 'course-1', 'link-1', 80, 100))

    def test_passback_grade_transport_error(self):
        self.session.post.side_effect = [LOGIN_OK, requests.ConnectionError('down')]
        self.assertFalse(self.agilix.passback_grade('lms-42', 'course-1', 'link-1', 80, 100))

    def test_list_grade_items_mapping(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(200, {'response': {'gradeitems': [
            {'id': 'i1', 'title': 'Survey', 'weight': 1, 'category': 'Surveys'},
        ]}})]
        items = self.agilix.list_grade_items('course-1')
        self.assertEqual(items, [{
            'item_id': 'i1', 'title': 'Survey', 'max_points': 100, 'weight': 1, 'category': 'Surveys',
        }])

    def test_list_grade_items_empty_on_error(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(500, {})]
        self.assertEqual(self.agilix.list_grade_items('course-1'), [])

    def test_get_course_raises(self):
        self.session.post.side_effect = [LOGIN_OK, fake_response(401, {})]
        with self.assertRaises(AgilixError):
            self.agilix.get_course('course-1')

    def test_validate_connection(self):
        self.session.post.return_value = fake_response(503, {})
        self.assertFalse(self.agilix.validate_connection())
        self.session.post.return_value = LOGIN_OK
        self.assertTrue(self.agilix.validate_connection())
