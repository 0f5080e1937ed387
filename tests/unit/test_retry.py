"""
Unit tests for the retry policy.
"""
from unittest.mock import MagicMock

import pytest

from pipeline.errors import LookupUnavailableError
from pipeline.retry import RetryPolicy


@pytest.mark.unit
class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_success_first_time(self):
        fn = MagicMock(return_value="ok")
        assert RetryPolicy(base_delay=0).call(fn, 1, key="v") == "ok"
        fn.assert_called_once_with(1, key="v")

    def test_retries_until_success(self):
        fn = MagicMock(side_effect=[LookupUnavailableError("down"), LookupUnavailableError("down"), "ok"])
        assert RetryPolicy(max_attempts=5, base_delay=0).call(fn) == "ok"
        assert fn.call_count == 3

    def test_reraises_after_max_attempts(self):
        fn = MagicMock(side_effect=LookupUnavailableError("still down"))
        with pytest.raises(LookupUnavailableError, match="still down"):
            RetryPolicy(max_attempts=3, base_delay=0).call(fn)
        assert fn.call_count == 3

    def test_other_errors_are_not_retried(self):
        fn = MagicMock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            RetryPolicy(max_attempts=5, base_delay=0).call(fn)
        assert fn.call_count == 1

    def test_custom_retry_on(self):
        fn = MagicMock(side_effect=[TimeoutError(), "ok"])
        policy = RetryPolicy(max_attempts=2, base_delay=0, retry_on=(TimeoutError,))
        assert policy.call(fn) == "ok"
