"""Tests for transient-failure classification and bounded retries."""

import warnings
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from compass_agent.infrastructure.persistence.retry import (
    RetryPolicy,
    is_transient_error,
    run_with_retry,
    wait_retry_backoff,
)

FAST = RetryPolicy(max_attempts=3, initial_backoff=0.001, max_backoff=0.001)


class TestIsTransientError:
    @pytest.mark.parametrize("error", [
        ConnectionError("connection reset by peer"),
        TimeoutError(),
        OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly")),
        RuntimeError("ECONNREFUSED 127.0.0.1:5432"),
    ])
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize("error", [
        IntegrityError("INSERT", {}, Exception("duplicate key")),
        ConnectionError("password authentication failed for user compass"),
        RuntimeError('relation "chat_sessions" does not exist'),
        ValueError("bad value"),
    ])
    def test_not_transient(self, error):
        assert not is_transient_error(error)


class TestRunWithRetry:
    @pytest.mark.asyncio
    async def test_recovers_from_transient_failures(self):
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("could not connect to server")
            return "ok"

        assert await run_with_retry(operation, FAST) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise ConnectionError("connection timed out")

        with pytest.raises(ConnectionError):
            await run_with_retry(operation, FAST)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_non_transient_fails_immediately(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise ValueError("syntax error at or near SELEKT")

        with pytest.raises(ValueError):
            await run_with_retry(operation, FAST)
        assert len(attempts) == 1


class TestBackoff:
    def test_first_wait_starts_at_initial_backoff(self):
        wait = wait_retry_backoff(RetryPolicy(initial_backoff=0.2, max_backoff=2.0))

        for _ in range(20):
            assert 0.2 <= wait(Mock(attempt_number=1)) <= 0.41

    def test_wait_grows_then_caps_at_max_backoff(self):
        wait = wait_retry_backoff(RetryPolicy(initial_backoff=0.2, max_backoff=2.0))

        assert 0.39 <= wait(Mock(attempt_number=2)) <= 0.61
        for _ in range(20):
            assert 2.0 <= wait(Mock(attempt_number=12)) <= 2.21

    def test_building_the_wait_emits_no_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            wait_retry_backoff(RetryPolicy())
