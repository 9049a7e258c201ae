"""
Unified exception handler.

Hooked into DRF through the EXCEPTION_HANDLER setting.
Clients tell success from failure with one rule:
  body has a `type` field  → something went wrong
  no `type` field          → success (possibly with `warnings`)

Error body:
{
    "type":    "validation_error" | "block" | "auth" | "recoverable" | "busy" | "error",
    "code":    "VIAL_QUANTITY_SAFEGUARD",
    "message": "...",
    "detail":  { ... }  // optional
}
"""

import logging

from django.conf import settings
from django.http import JsonResponse
from rest_framework import exceptions as drf_exceptions

from .db import is_pool_exhausted, is_transient_error
from .exceptions import BaseAppException, ServiceBusyError

logger = logging.getLogger(__name__)


def _error_response(type_, code, message, status, detail=None, headers=None):
    body = {
        'type': type_,
        'code': code,
        'message': message,
    }
    if detail is not None:
        body['detail'] = detail
    response = JsonResponse(body, status=status)
    for name, value in (headers or {}).items():
        response[name] = value
    return response


def _busy_response(exc):
    retry_after = getattr(exc, 'retry_after', settings.SERVICE_BUSY_RETRY_AFTER_SECONDS)
    message = exc.message if isinstance(exc, BaseAppException) else \
        'Service is busy, please retry shortly.'
    code = exc.code if isinstance(exc, BaseAppException) else 'SERVICE_BUSY'
    extra = exc.detail if isinstance(exc, BaseAppException) and isinstance(exc.detail, dict) else {}
    return _error_response(
        'busy', code, message, 503,
        detail={**extra, 'retry_after': retry_after},
        headers={'Retry-After': str(retry_after)},
    )


def unified_exception_handler(exc, context):
    """
    DRF exception handler entry point.

    Order:
    1. ServiceBusyError → 503 + Retry-After
    2. BaseAppException and subclasses → unified body
    3. DRF's own exceptions (auth, permission, parse, serializer validation)
    4. anything else → logged, generic 500 (503 when it is pool exhaustion)
    """

    # --- 1. busy ---
    if isinstance(exc, ServiceBusyError):
        return _busy_response(exc)

    # --- 2. our hierarchy ---
    if isinstance(exc, BaseAppException):
        return _error_response(exc.type, exc.code, exc.message, exc.http_status, exc.detail)

    # --- 3. DRF ---
    if isinstance(exc, drf_exceptions.ValidationError):
        return _error_response(
            'validation_error', 'VALIDATION_ERROR', 'Request validation failed',
            400, detail=exc.detail,
        )
    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return _error_response('auth', 'UNAUTHORIZED', str(exc.detail), 401)
    if isinstance(exc, drf_exceptions.PermissionDenied):
        return _error_response('auth', 'FORBIDDEN', str(exc.detail), 403)
    if isinstance(exc, drf_exceptions.APIException):
        return _error_response(
            'validation_error' if exc.status_code < 500 else 'error',
            exc.default_code.upper(),
            str(exc.detail),
            exc.status_code,
        )

    # --- 4. unexpected ---
    view = context.get('view') if context else None
    if is_pool_exhausted(exc) or is_transient_error(exc):
        logger.error('Transient failure in %s: %s', type(view).__name__, exc)
        return _busy_response(exc)

    logger.exception('Unhandled exception in %s', type(view).__name__, exc_info=exc)
    return _error_response(
        'error', 'INTERNAL_ERROR',
        'An internal error occurred. It has been logged for investigation.',
        500,
    )
