"""
Unified exception hierarchy.

Every business exception inherits BaseAppException and carries:
- type:        error family (validation_error / block / auth / recoverable / busy / error)
- code:        machine-readable code (VIAL_QUANTITY_SAFEGUARD / INVALID_SECRET / ...)
- message:     human-readable description
- detail:      optional extra payload (dict / list / None)
- http_status: HTTP status code

Views and services only raise; exception_handler formats the response.
"""


class BaseAppException(Exception):
    """Base class of every business exception. Critical-path failures use it directly (500)."""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """Input failed validation. Nothing has been written, 400."""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class BlockError(BaseAppException):
    """A business rule blocks the operation (wrong state, not found), 409."""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class AuthError(BaseAppException):
    """
    Authentication or authorization failure.

    401 for a bad or missing credential, 403 (pass http_status) for a known
    caller that is not allowed to act on the target clinic / provider.
    """

    type = 'auth'
    code = 'UNAUTHORIZED'
    http_status = 401


class RecoverableError(BaseAppException):
    """
    The local record is durable but the external call failed.

    The caller retries only the external step (POST .../submit/), never the
    whole request.
    """

    type = 'recoverable'
    code = 'EXTERNAL_SUBMISSION_FAILED'
    http_status = 502


class ServiceBusyError(BaseAppException):
    """Transient infrastructure exhaustion. 503 with a Retry-After header."""

    type = 'busy'
    code = 'SERVICE_BUSY'
    http_status = 503

    def __init__(self, message, code=None, detail=None, http_status=None, retry_after=15):
        self.retry_after = retry_after
        super().__init__(message, code=code, detail=detail, http_status=http_status)
