"""Tests for exponential backoff on transient network failures."""

from __future__ import annotations

import pytest

from quikim.core.config import default_config
from quikim.errors import RemoteAPIError, TransientNetworkError
from quikim.sync.retry import RetryPolicy, retry_with_backoff


class TestRetryPolicy:
    def test_default_delays(self) -> None:
        assert RetryPolicy().delays() == [1.0, 2.0]

    def test_delays_are_capped(self) -> None:
        policy = RetryPolicy(max_attempts=6, initial_delay=1.0, multiplier=3.0, max_delay=10.0)
        assert policy.delays() == [1.0, 3.0, 9.0, 10.0, 10.0]

    def test_from_config(self) -> None:
        config = default_config()
        config["retry"]["max_attempts"] = 5
        assert RetryPolicy.from_config(config).max_attempts == 5


class TestRetryWithBackoff:
    def test_success_first_try(self) -> None:
        sleeps: list[float] = []
        assert retry_with_backoff(lambda: 42, sleep=sleeps.append) == 42
        assert sleeps == []

    def test_recovers_after_transient_failures(self) -> None:
        sleeps: list[float] = []
        attempts = iter([TransientNetworkError("reset"), TransientNetworkError("timeout"), "ok"])

        def operation() -> str:
            outcome = next(attempts)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert retry_with_backoff(operation, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self) -> None:
        calls: list[int] = []
        sleeps: list[float] = []

        def operation() -> None:
            calls.append(1)
            raise TransientNetworkError("refused")

        with pytest.raises(TransientNetworkError, match="refused"):
            retry_with_backoff(operation, RetryPolicy(max_attempts=3), sleep=sleeps.append)
        assert len(calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_remote_errors_are_not_retried(self) -> None:
        calls: list[int] = []

        def operation() -> None:
            calls.append(1)
            raise RemoteAPIError("bad request", 400)

        with pytest.raises(RemoteAPIError):
            retry_with_backoff(operation, sleep=lambda _: None)
        assert len(calls) == 1
