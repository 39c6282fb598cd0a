from django.core.exceptions import ValidationError
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication

from .models import UserSession


def session_id_from_request(request):
    session_id = request.META.get('HTTP_X_SESSION_ID')
    if not session_id and hasattr(request.data, 'get'):
        session_id = request.data.get('sessionId')
    if not session_id:
        session_id = request.query_params.get('sessionId')
    return session_id


def resolve_session(session_id) -> UserSession:
    """Load a session, raising 404 when unknown and 401 when expired."""
    try:
        session = UserSession.objects.get(id=session_id)
    except (UserSession.DoesNotExist, ValidationError, ValueError):
        raise exceptions.NotFound('Session not found')
    if session.is_expired or not session.is_active:
        raise exceptions.AuthenticationFailed('Session expired')
    return session


class LtiSessionAuthentication(BaseAuthentication):
    """Authenticates API calls with the session id issued at LTI launch.

    The session itself becomes `request.user` and `request.auth`.
    """

    def authenticate(self, request):
        session_id = session_id_from_request(request)
        if not session_id:
            raise exceptions.NotAuthenticated('Session ID required')
        session = resolve_session(session_id)
        return session, session

    def authenticate_header(self, request):
        return 'LtiSession'
