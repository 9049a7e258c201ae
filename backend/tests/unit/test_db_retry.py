"""
Retry helpers and transient-error classification.
time.sleep is patched out; only call counts and wait values are checked.
"""
import pytest
from unittest.mock import MagicMock, patch
from django.db import DatabaseError, IntegrityError

from telehealth.db import is_pool_exhausted, is_transient_error, with_db_retry, with_retry


class TestClassification:

    @pytest.mark.parametrize('message', [
        'connection refused',
        'Timed out waiting for a connection from the pool',
        'could not serialize access due to concurrent update',
        'database is locked',
        'deadlock detected',
    ])
    def test_transient(self, message):
        assert is_transient_error(Exception(message))

    @pytest.mark.parametrize('message', [
        'duplicate key value violates unique constraint',
        'Provider is not assigned to this clinic.',
    ])
    def test_not_transient(self, message):
        assert not is_transient_error(Exception(message))

    def test_pool_exhausted(self):
        assert is_pool_exhausted(Exception('FATAL: remaining connection slots are reserved'))
        assert not is_pool_exhausted(Exception('deadlock detected'))


class TestWithDbRetry:

    @patch('telehealth.db.time.sleep')
    def test_linear_backoff_then_success(self, mock_sleep):
        func = MagicMock(side_effect=[DatabaseError('connection reset'), DatabaseError('again'), 'ok'])

        assert with_db_retry(func, attempts=3, delay=0.5) == 'ok'
        assert func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch('telehealth.db.time.sleep')
    def test_gives_up_after_attempts(self, mock_sleep):
        func = MagicMock(side_effect=DatabaseError('down'))

        with pytest.raises(DatabaseError):
            with_db_retry(func, attempts=3, delay=0)
        assert func.call_count == 3

    @patch('telehealth.db.time.sleep')
    def test_integrity_error_is_not_retried(self, mock_sleep):
        func = MagicMock(side_effect=IntegrityError('unique'))

        with pytest.raises(IntegrityError):
            with_db_retry(func, attempts=3, delay=0)
        assert func.call_count == 1


class TestWithRetry:

    @patch('telehealth.db.time.sleep')
    def test_capped_exponential_backoff(self, mock_sleep):
        func = MagicMock(side_effect=[
            DatabaseError('timeout'), DatabaseError('timeout'), DatabaseError('timeout'), 'ok',
        ])

        assert with_retry(func, max_retries=3, initial_delay=0.5, max_delay=1.5) == 'ok'
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0, 1.5]

    @patch('telehealth.db.time.sleep')
    def test_non_transient_error_propagates_immediately(self, mock_sleep):
        func = MagicMock(side_effect=ValueError('bad input'))

        with pytest.raises(ValueError):
            with_retry(func, max_retries=3)
        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch('telehealth.db.time.sleep')
    def test_exhausted_retries_reraise(self, mock_sleep):
        func = MagicMock(side_effect=DatabaseError('connection pool exhausted'))

        with pytest.raises(DatabaseError):
            with_retry(func, max_retries=2)
        assert func.call_count == 3
