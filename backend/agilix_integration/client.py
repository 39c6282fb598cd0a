"""Agilix Buzz (DLAP) API client.

Every call is a `cmd` envelope posted to `/cmd` with a bearer token obtained
from `/auth/login`. The token is cached in the Django cache so all workers of
a deployment share it until it expires.
"""
import hashlib
import logging

import requests
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

logger = logging.getLogger(__name__)

TOKEN_CACHE_PREFIX = 'agilix:token:'


class AgilixError(Exception):
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AgilixClient:
    def __init__(self, domain, username, password, base_url='https://api.agilix.com', timeout=30,
                 token_ttl=30 * 60, session=None):
        self.domain = domain
        self.username = username
        self.password = password
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.token_ttl = token_ttl
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})

    @classmethod
    def from_settings(cls):
        conf = settings.AGILIX
        return cls(
            domain=conf['domain'],
            username=conf['username'],
            password=conf['password'],
            base_url=conf['base_url'],
            timeout=getattr(settings, 'EXTERNAL_API_TIMEOUT', 30),
            token_ttl=getattr(settings, 'AGILIX_TOKEN_TTL', 30 * 60),
        )

    def _token_cache_key(self):
        ident = f"{self.base_url}|{self.domain}|{self.username}"
        return TOKEN_CACHE_PREFIX + hashlib.sha1(ident.encode()).hexdigest()

    def _post(self, path, payload, headers=None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, json=payload, headers=headers or {}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error('Agilix API request failed: %s: %s', url, e)
            raise AgilixError(str(e)) from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {'raw': resp.text}

        if resp.status_code >= 400:
            logger.error('Agilix API error: status=%s url=%s data=%s', resp.status_code, url, data)
            raise AgilixError(f'Agilix API returned {resp.status_code}', resp.status_code, data)
        return data

    def authenticate(self) -> str:
        key = self._token_cache_key()
        token = cache.get(key)
        if token:
            return token

        data = self._post('/auth/login', {
            'domain': self.domain,
            'username': self.username,
            'password': self.password,
        })
        token = (data.get('response') or {}).get('token')
        if not token:
            raise AgilixError('Authentication failed: no token received', payload=data)

        cache.set(key, token, self.token_ttl)
        logger.info('Agilix authentication successful')
        return token

    def clear_token(self):
        cache.delete(self._token_cache_key())

    def command(self, cmd: str, **params) -> dict:
        """Run a DLAP command and return the `response` part of the reply."""
        token = self.authenticate()
        payload = {'cmd': cmd, 'domain': self.domain}
        payload.update(params)
        data = self._post('/cmd', payload, headers={'Authorization': f'Bearer {token}'})
        return data.get('response') or {}

    def passback_grade(self, user_id, context_id, resource_link_id, grade, max_grade, timestamp=None) -> bool:
        timestamp = timestamp or timezone.now()
        logger.info('Attempting grade passback to Agilix: user=%s context=%s grade=%s/%s',
                    user_id, context_id, grade, max_grade)
        try:
            response = self.command(
                'putgrades2',
                userid=user_id,
                contextid=context_id,
                resourcelinkid=resource_link_id,
                grades=[{
                    'score': float(grade),
                    'maxscore': float(max_grade),
                    'timestamp': timestamp.isoformat(),
                }],
            )
        except AgilixError:
            logger.exception('Error passing back grade to Agilix for user %s', user_id)
            return False

        if response.get('code') == 'OK':
            logger.info('Grade passback successful: user=%s grade=%s', user_id, grade)
            return True
        logger.error('Grade passback failed: %s', response)
        return False

    def get_user(self, user_id):
        return self.command('getuser', userid=user_id)

    def get_course(self, course_id):
        return self.command('getcourse', courseid=course_id)

    def get_domain(self):
        try:
            return self.command('getdomain')
        except AgilixError:
            logger.exception('Error fetching domain info')
            return None

    def list_grade_items(self, course_id) -> list:
        try:
            response = self.command('listgradeitems', courseid=course_id)
        except AgilixError:
            logger.exception('Error fetching grade items for course %s', course_id)
            return []
        return [{
            'item_id': item.get('id'),
            'title': item.get('title'),
            'max_points': item.get('maxpoints') or 100,
            'weight': item.get('weight'),
            'category': item.get('category'),
        } for item in response.get('gradeitems') or []]

    def create_grade_item(self, course_id, title, max_points, weight=None, category=None):
        params = {'courseid': course_id, 'title': title, 'maxpoints': max_points}
        if weight:
            params['weight'] = weight
        if category:
            params['category'] = category
        try:
            response = self.command('putgradeitem', **params)
        except AgilixError:
            logger.exception('Error creating grade item in course %s', course_id)
            return None
        item_id = response.get('itemid')
        if item_id:
            logger.info('Grade item created: %s', item_id)
        return item_id

    def get_user_grades(self, course_id, user_id) -> list:
        try:
            return self.command('getgrades2', courseid=course_id, userid=user_id).get('grades') or []
        except AgilixError:
            logger.exception('Error fetching grades for user %s in course %s', user_id, course_id)
            return []

    def get_enrollment(self, course_id, user_id):
        try:
            return self.command('getenrollment', courseid=course_id, userid=user_id)
        except AgilixError:
            logger.exception('Error fetching enrollment for user %s in course %s', user_id, course_id)
            return None

    def list_enrollments(self, course_id) -> list:
        try:
            return self.command('listenrollments', courseid=course_id).get('enrollments') or []
        except AgilixError:
            logger.exception('Error fetching enrollments for course %s', course_id)
            return []

    def log_activity(self, user_id, course_id, activity, description) -> bool:
        try:
            response = self.command(
                'putactivity',
                userid=user_id,
                courseid=course_id,
                activity=activity,
                description=description,
                timestamp=timezone.now().isoformat(),
            )
        except AgilixError:
            logger.exception('Error logging activity to Agilix')
            return False
        return response.get('code') == 'OK'

    def validate_connection(self) -> bool:
        try:
            return bool(self.authenticate())
        except AgilixError:
            logger.exception('Agilix connection validation failed')
            return False
