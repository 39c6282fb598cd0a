from rest_framework.views import exception_handler


def _first_message(detail):
    if isinstance(detail, list):
        return _first_message(detail[0]) if detail else ''
    if isinstance(detail, dict):
        if 'detail' in detail:
            return _first_message(detail['detail'])
        for key, value in detail.items():
            return f"{key}: {_first_message(value)}"
        return ''
    return str(detail)


def envelope_exception_handler(exc, context):
    """Wrap DRF errors in the `{success, error}` envelope used by every endpoint."""
    response = exception_handler(exc, context)
    if response is None:
        return None

    body = {'success': False, 'error': _first_message(response.data)}
    if isinstance(response.data, dict) and 'detail' not in response.data:
        body['details'] = response.data
    response.data = body
    return response
