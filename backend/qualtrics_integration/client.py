"""Qualtrics REST API (v3) client.

Used for survey verification when instructors attach a survey, for personalised
survey links, and by the grade poller to read completed responses.
"""
import logging
import time
from urllib.parse import urlencode

import requests
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


class QualtricsError(Exception):
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def normalize_response(raw: dict) -> dict:
    """Map a raw Qualtrics response record to the shape the connector stores."""
    return {
        'response_id': raw.get('responseId'),
        'survey_id': raw.get('surveyId'),
        'recorded': raw.get('recordedDate'),
        'finished': raw.get('finished') in (1, True),
        'progress': raw.get('progress') or 0,
        'duration': raw.get('duration') or 0,
        'values': raw.get('values') or {},
    }


class QualtricsClient:
    def __init__(self, api_token, base_url='https://iad1.qualtrics.com', brand_id=None, library_id=None,
                 timeout=30, session=None):
        self.base_url = base_url.rstrip('/')
        self.api_url = f"{self.base_url}/API/v3"
        self.brand_id = brand_id
        self.library_id = library_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'X-API-TOKEN': api_token,
            'Content-Type': 'application/json',
        })

    @classmethod
    def from_settings(cls):
        conf = settings.QUALTRICS
        return cls(
            api_token=conf['api_token'],
            base_url=conf['base_url'],
            brand_id=conf.get('brand_id'),
            library_id=conf.get('library_id'),
            timeout=getattr(settings, 'EXTERNAL_API_TIMEOUT', 30),
        )

    def _request(self, method, path, **kwargs) -> dict:
        url = f"{self.api_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error('Qualtrics API request failed: %s %s: %s', method, url, e)
            raise QualtricsError(str(e)) from e

        if not resp.content:
            data = {}
        else:
            try:
                data = resp.json()
            except ValueError:
                data = {'raw': resp.text}

        if resp.status_code >= 400:
            logger.error('Qualtrics API error: status=%s url=%s data=%s', resp.status_code, url, data)
            raise QualtricsError(f'Qualtrics API returned {resp.status_code}', resp.status_code, data)
        return data

    def build_sso_url(self, survey_id: str, embedded_data: dict = None) -> str:
        url = f"{self.base_url}/jfe/form/{survey_id}"
        params = {k: v for k, v in (embedded_data or {}).items() if v is not None}
        return f"{url}?{urlencode(params)}" if params else url

    def whoami(self) -> dict:
        """Owner of the API token; a cheap credential check."""
        return self._request('GET', '/whoami').get('result') or {}

    # Surveys

    def verify_survey(self, survey_id: str) -> bool:
        try:
            data = self._request('GET', f'/surveys/{survey_id}')
        except QualtricsError:
            logger.error('Error verifying survey %s', survey_id)
            return False
        return bool(data.get('result'))

    def get_survey(self, survey_id: str) -> dict:
        return self._request('GET', f'/surveys/{survey_id}').get('result')

    def get_survey_questions(self, survey_id: str) -> list:
        result = self._request('GET', f'/surveys/{survey_id}/questions').get('result') or {}
        return result.get('elements') or []

    def create_survey_from_template(self, template_id: str, name: str, brand_id: str = None,
                                    library_id: str = None) -> str:
        payload = {
            'SurveyName': name,
            'Language': 'EN',
            'ProjectCategory': 'CORE',
        }
        brand_id = brand_id or self.brand_id
        library_id = library_id or self.library_id
        if brand_id:
            payload['BrandId'] = brand_id
        if library_id:
            payload['LibraryId'] = library_id

        result = self._request('POST', '/survey-definitions', json=payload).get('result') or {}
        survey_id = result.get('SurveyID')
        if not survey_id:
            raise QualtricsError(f'Failed to create survey from template {template_id}: no id returned')
        logger.info('Survey created: %s', survey_id)
        return survey_id

    def update_survey_status(self, survey_id: str, is_active: bool) -> bool:
        try:
            self._request('PUT', f'/surveys/{survey_id}', json={'isActive': is_active})
        except QualtricsError:
            logger.error('Error updating survey status %s', survey_id)
            return False
        return True

    def delete_survey(self, survey_id: str) -> bool:
        try:
            self._request('DELETE', f'/surveys/{survey_id}')
        except QualtricsError:
            logger.error('Error deleting survey %s', survey_id)
            return False
        return True

    # Distributions

    def create_distribution(self, survey_id: str, description: str, link_type: str = 'Individual',
                            expiration_date: str = None, threat_protection: bool = True) -> str:
        payload = {
            'surveyId': survey_id,
            'linkType': link_type,
            'description': description,
            'action': 'CreateDistribution',
            'linkSecurityThreatProtection': threat_protection,
        }
        if expiration_date:
            payload['expirationDate'] = expiration_date

        result = self._request('POST', '/distributions', json=payload).get('result') or {}
        distribution_id = result.get('id')
        if not distribution_id:
            raise QualtricsError('Failed to create distribution: no id returned')
        logger.info('Distribution created: %s', distribution_id)
        return distribution_id

    def generate_survey_link(self, survey_id: str, distribution_id: str, embedded_data: dict = None) -> str:
        """Return an individual link for the distribution, or the plain survey URL when none is issued."""
        embedded_data = dict(embedded_data or {})
        if distribution_id:
            payload = {
                'surveyId': survey_id,
                'distributionId': distribution_id,
                'embeddedData': {
                    **embedded_data,
                    'source': 'LTI',
                    'timestamp': timezone.now().isoformat(),
                },
                'linkType': 'Individual',
            }
            try:
                result = self._request('POST', f'/distributions/{distribution_id}/links', json=payload).get('result') or {}
                if result.get('link'):
                    return result['link']
            except QualtricsError:
                logger.error('Error generating survey link for %s, using public form URL', survey_id)
        return self.build_sso_url(survey_id, embedded_data)

    def get_distribution_history(self, survey_id: str) -> list:
        try:
            result = self._request('GET', f'/surveys/{survey_id}/distributions').get('result') or {}
        except QualtricsError:
            logger.error('Error fetching distribution history for survey %s', survey_id)
            return []
        return result.get('elements') or []

    # Responses

    def get_survey_responses(self, survey_id: str, limit: int = None, skip_in_progress: bool = False,
                             fmt: str = 'json') -> list:
        params = {'format': fmt}
        if limit:
            params['limit'] = str(limit)
        if skip_in_progress:
            params['skipInProgress'] = 'true'
        result = self._request('GET', f'/surveys/{survey_id}/responses', params=params).get('result') or {}
        return [normalize_response(r) for r in result.get('responses') or []]

    def get_survey_response(self, survey_id: str, response_id: str):
        try:
            result = self._request('GET', f'/surveys/{survey_id}/responses/{response_id}').get('result')
        except QualtricsError:
            logger.error('Error fetching response %s for survey %s', response_id, survey_id)
            return None
        return normalize_response(result) if result else None

    def get_responses(self, survey_id: str, start_date: str = None, end_date: str = None,
                      finished: bool = None, limit: int = None) -> list:
        params = {}
        if start_date:
            params['startDate'] = start_date
        if end_date:
            params['endDate'] = end_date
        if finished is not None:
            params['finished'] = 'true' if finished else 'false'
        if limit:
            params['limit'] = str(limit)
        result = self._request('GET', f'/surveys/{survey_id}/responses', params=params).get('result') or {}
        return [normalize_response(r) for r in result.get('elements') or []]

    def export_survey_responses(self, survey_id: str, fmt: str = 'csv', poll_interval: float = 1.0,
                                max_attempts: int = 120) -> str:
        """Start a response export, wait for it to finish and return the download URL."""
        started = self._request('POST', f'/surveys/{survey_id}/export-responses',
                                json={'format': fmt, 'compress': False})
        progress_id = started['result']['progressId']

        for _ in range(max_attempts):
            time.sleep(poll_interval)
            progress = self._request('GET', f'/surveys/{survey_id}/export-responses/{progress_id}')
            export_status = progress['result']['status']
            if export_status == 'complete':
                break
            if export_status == 'failed':
                raise QualtricsError(f'Export {progress_id} failed')
        else:
            raise QualtricsError(f'Export {progress_id} did not complete after {max_attempts} checks')

        file_info = self._request('GET', f'/surveys/{survey_id}/export-responses/{progress_id}/file')
        return file_info['result']['downloadUrl']
