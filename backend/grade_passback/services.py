import logging
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from agilix_integration.client import AgilixClient
from config.env import MIN_GRADE
from lti.models import LtiLaunch
from qualtrics_integration.client import QualtricsClient
from surveys.models import SurveyConfig
from .models import GradePassback

logger = logging.getLogger(__name__)

# Embedded-data keys that identify the respondent, most specific first
IDENTITY_KEYS = ('userEmail', 'ltiUserId', 'QID_userId')


def calculate_grade(survey: SurveyConfig, response: dict) -> float:
    """Grade for a finished response according to the survey's scoring type."""
    if survey.scoring_type == 'completion':
        return survey.max_grade
    if survey.scoring_type == 'percentage':
        score = (response.get('values') or {}).get('score')
        if score:
            try:
                return float(score) / 100 * survey.max_grade
            except (TypeError, ValueError):
                logger.warning('Non-numeric score %r in response %s', score, response.get('response_id'))
    # Manual scoring is left to the instructor
    return MIN_GRADE


def grade_from_progress(survey: SurveyConfig, response: dict) -> float:
    """Grade for a webhook-reported response, which may be unfinished."""
    if response.get('finished'):
        return survey.max_grade
    progress = response.get('progress') or 0
    if progress > 50:
        return round(progress / 100 * survey.max_grade)
    return MIN_GRADE


def response_identity(values: dict):
    """Return (user_id, lms_user_id) from a response's embedded data, user_id is None when unknown."""
    user_id = next((values[key] for key in IDENTITY_KEYS if values.get(key)), None)
    return user_id, values.get('ltiUserId') or ''


def find_launch(launch_id=None, user_id=None, context_id=None, resource_link_id=None):
    """The launch a response came from: by id when Qualtrics echoed it back, else the user's latest."""
    if launch_id:
        try:
            return LtiLaunch.objects.get(pk=launch_id)
        except (LtiLaunch.DoesNotExist, ValidationError, ValueError):
            logger.warning('Launch %s referenced by a response does not exist', launch_id)
    if not user_id:
        return None
    return LtiLaunch.objects.filter(
        user_id=user_id,
        context_id=context_id,
        resource_link_id=resource_link_id,
    ).order_by('-launch_time').first()


def record_grade(survey: SurveyConfig, response_id, user_id, grade, lti_launch=None, lms_user_id=''):
    """Store a grade record for a response exactly once.

    Returns (record, created). A response that already has a record, including one
    inserted concurrently by the other ingestion path, returns the existing record.
    """
    existing = GradePassback.objects.filter(qualtrics_response_id=response_id).first()
    if existing is not None:
        return existing, False

    try:
        with transaction.atomic():
            record = GradePassback.objects.create(
                user_id=user_id,
                user_email=user_id,
                lms_user_id=lms_user_id or (lti_launch.lms_user_id if lti_launch else ''),
                lti_launch=lti_launch,
                survey_config=survey,
                qualtrics_response_id=response_id,
                grade=grade,
                max_grade=survey.max_grade,
            )
    except IntegrityError:
        logger.info('Response %s was recorded concurrently', response_id)
        return GradePassback.objects.get(qualtrics_response_id=response_id), False

    logger.info('Created grade passback %s for user %s', record.id, user_id)
    return record, True


class ResponsePoller:
    """Turns finished Qualtrics responses into pending grade records.

    Runs from the `poll_qualtrics_responses` command on a timer; each survey
    remembers the time of its last successful poll.
    """

    def __init__(self, qualtrics=None, lookback_hours=None):
        self.qualtrics = qualtrics or QualtricsClient.from_settings()
        self.lookback_hours = lookback_hours or getattr(settings, 'QUALTRICS_POLL_LOOKBACK_HOURS', 24)

    def poll_all(self) -> dict:
        stats = {'surveys': 0, 'created': 0, 'failed': 0}
        surveys = SurveyConfig.objects.pollable()
        if not surveys.exists():
            logger.info('No active surveys to poll')
            return stats

        for survey in surveys:
            stats['surveys'] += 1
            try:
                stats['created'] += self.poll_survey(survey)
            except Exception:
                stats['failed'] += 1
                logger.exception('Error polling responses for survey %s', survey.id)
        return stats

    def poll_survey(self, survey: SurveyConfig) -> int:
        started = timezone.now()
        since = survey.last_poll_time or started - timedelta(hours=self.lookback_hours)
        responses = self.qualtrics.get_responses(
            survey.qualtrics_survey_id,
            start_date=since.isoformat(),
            finished=True,
        )
        logger.info('Found %s new responses for survey %s', len(responses), survey.id)

        created = 0
        for response in responses:
            try:
                if self._ingest(survey, response):
                    created += 1
            except Exception:
                logger.exception('Error ingesting response %s for survey %s', response.get('response_id'), survey.id)

        survey.last_poll_time = started
        survey.save(update_fields=['last_poll_time'])
        return created

    def _ingest(self, survey, response) -> bool:
        response_id = response['response_id']
        if GradePassback.objects.filter(qualtrics_response_id=response_id).exists():
            return False

        values = response.get('values') or {}
        user_id, lms_user_id = response_identity(values)
        if not user_id:
            logger.warning('No user ID found in response %s', response_id)
            return False

        if not survey.allow_multiple_responses and survey.grade_passbacks.filter(user_id=user_id).exists():
            logger.info('User %s already has a grade for survey %s, skipping response %s',
                        user_id, survey.id, response_id)
            return False

        launch = find_launch(values.get('ltiLaunchId'), user_id, survey.context_id, survey.resource_link_id)
        _, created = record_grade(
            survey,
            response_id,
            user_id,
            calculate_grade(survey, response),
            lti_launch=launch,
            lms_user_id=lms_user_id,
        )
        return created


def pass_back_grade(record: GradePassback, agilix=None) -> bool:
    """Send one grade record to the Agilix grade book. Does not update the record."""
    launch = record.lti_launch
    if launch is None:
        logger.error('LTI launch not found for grade passback %s', record.id)
        return False

    agilix = agilix or AgilixClient.from_settings()
    return agilix.passback_grade(
        # Prefer the LMS's own user id, fall back to the email
        user_id=record.lms_user_id or launch.lms_user_id or record.user_id,
        context_id=launch.context_id,
        resource_link_id=launch.resource_link_id,
        grade=record.grade,
        max_grade=record.max_grade,
        timestamp=record.timestamp,
    )


def process_record(record: GradePassback, agilix=None) -> bool:
    """Pass back a record and store the outcome on it."""
    try:
        success = pass_back_grade(record, agilix=agilix)
    except Exception as e:
        logger.exception('Error processing grade %s', record.id)
        record.mark_failed(e)
        return False

    if success:
        record.mark_processed()
    else:
        record.mark_failed('Failed to pass back to Agilix')
    return success


def process_records(records, agilix=None) -> dict:
    records = list(records)
    if records and agilix is None:
        agilix = AgilixClient.from_settings()
    processed = sum(1 for record in records if process_record(record, agilix=agilix))
    return {'processed': processed, 'total': len(records)}


def process_pending(limit=50, agilix=None) -> dict:
    records = GradePassback.objects.pending().select_related('lti_launch').order_by('timestamp')[:limit]
    return process_records(records, agilix=agilix)
