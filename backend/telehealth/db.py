"""
Database retry helpers and the serializable transaction context.

Two retry shapes are used:
  with_db_retry  fixed attempts, linear backoff (delay * attempt). Intake webhook writes.
  with_retry     capped exponential backoff, only for errors classified as transient.
                 Wraps the whole prescription transaction.
"""

import logging
import time
from contextlib import contextmanager

from django.conf import settings
from django.db import DatabaseError, IntegrityError, connections, transaction

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_MARKERS = (
    'connection',
    'timeout',
    'timed out',
    'pool',
    'could not serialize',
    'deadlock',
    'database is locked',
)

POOL_EXHAUSTED_MARKERS = (
    'connection pool',
    'pool timeout',
    'too many connections',
    'remaining connection slots',
)


def is_transient_error(exc) -> bool:
    """Connection / timeout / pool errors, matched on the message text."""
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def is_pool_exhausted(exc) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in POOL_EXHAUSTED_MARKERS)


def with_db_retry(func, *, label='db', attempts=None, delay=None):
    """
    Run func() retrying database errors with linearly increasing backoff.

    IntegrityError is never retried: a constraint conflict will not go away
    by waiting, callers handle it themselves.
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    delay = settings.DB_RETRY_DELAY_SECONDS if delay is None else delay

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except IntegrityError:
            raise
        except DatabaseError as exc:
            if attempt >= attempts:
                logger.error('[%s] giving up after %d attempts: %s', label, attempts, exc)
                raise
            wait = delay * attempt
            logger.warning('[%s] attempt %d/%d failed: %s, retrying in %.1fs',
                           label, attempt, attempts, exc, wait)
            time.sleep(wait)


def with_retry(func, *, max_retries=3, initial_delay=0.2, max_delay=2.0,
               retry_on=is_transient_error, label='tx'):
    """
    Run func() retrying only errors for which retry_on(exc) is true.

    Backoff: initial_delay * 2^attempt, capped at max_delay.
    Validation / authorization errors propagate on the first raise.
    """
    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:
            if attempt >= max_retries or not retry_on(exc):
                raise
            wait = min(initial_delay * (2 ** attempt), max_delay)
            attempt += 1
            logger.warning('[%s] transient error (retry %d/%d in %.2fs): %s',
                           label, attempt, max_retries, wait, exc)
            time.sleep(wait)


@contextmanager
def serializable_atomic(timeout_ms=None, using='default'):
    """
    transaction.atomic() at SERIALIZABLE isolation with a statement timeout.

    Isolation and timeout are only set on PostgreSQL and only for the
    outermost block; nested blocks are savepoints and inherit both.
    A lock wait longer than timeout_ms raises into the caller's retry.
    """
    connection = connections[using]
    outermost = not connection.in_atomic_block

    with transaction.atomic(using=using):
        if outermost and connection.vendor == 'postgresql':
            with connection.cursor() as cursor:
                cursor.execute('SET TRANSACTION ISOLATION LEVEL SERIALIZABLE')
                if timeout_ms:
                    cursor.execute('SET LOCAL statement_timeout = %s', [int(timeout_ms)])
                    cursor.execute('SET LOCAL lock_timeout = %s', [int(timeout_ms)])
        yield
