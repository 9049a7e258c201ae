"""
Request authentication.

ClinicTokenAuthentication  DRF auth class for staff endpoints:
                           "Authorization: Token <api_token>" (or Bearer).
verify_webhook_secret      shared-secret check for intake webhooks, fail closed.
"""

import hmac
import logging

from django.conf import settings
from rest_framework import authentication
from rest_framework import exceptions as drf_exceptions

from .exceptions import AuthError, BaseAppException
from .models import ClinicUser

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('telehealth.security')


class ClinicTokenAuthentication(authentication.BaseAuthentication):
    keywords = ('token', 'bearer')

    def authenticate(self, request):
        header = authentication.get_authorization_header(request).decode('latin-1').split()
        if not header or header[0].lower() not in self.keywords:
            return None
        if len(header) != 2:
            raise drf_exceptions.AuthenticationFailed('Invalid token header.')

        user = ClinicUser.objects.select_related('clinic', 'provider').filter(
            api_token=header[1], is_active=True,
        ).first()
        if user is None:
            security_logger.warning('Rejected API token from %s', request.META.get('REMOTE_ADDR'))
            raise drf_exceptions.AuthenticationFailed('Invalid or inactive token.')
        return user, header[1]

    def authenticate_header(self, request):
        return 'Token'


def extract_webhook_secret(request) -> str:
    """x-webhook-secret, then x-api-key, then Authorization: Bearer."""
    headers = request.headers
    secret = headers.get('X-Webhook-Secret') or headers.get('X-Api-Key')
    if secret:
        return secret.strip()
    auth = headers.get('Authorization', '')
    if auth.lower().startswith('bearer '):
        return auth[7:].strip()
    return ''


def verify_webhook_secret(request) -> None:
    expected = settings.INTAKE_WEBHOOK_SECRET
    if not expected:
        logger.error('Intake webhook secret is not configured, rejecting delivery')
        raise BaseAppException(
            message='Webhook secret is not configured on the server.',
            code='NO_SECRET_CONFIGURED',
        )

    provided = extract_webhook_secret(request)
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        security_logger.warning('Invalid intake webhook secret from %s', client_ip(request))
        raise AuthError(message='Invalid webhook secret.', code='INVALID_SECRET')


def client_ip(request) -> str:
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', '')
