"""Exponential backoff for transient network failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from quikim.errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: dict) -> RetryPolicy:
        retry = config.get("retry", {})
        return cls(
            max_attempts=int(retry.get("max_attempts", 3)),
            initial_delay=float(retry.get("initial_delay", 1.0)),
            multiplier=float(retry.get("multiplier", 2.0)),
            max_delay=float(retry.get("max_delay", 10.0)),
        )

    def delays(self) -> list[float]:
        """Sleep durations between attempts: one fewer than ``max_attempts``."""
        result = []
        delay = self.initial_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            result.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return result


def retry_with_backoff(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    description: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *operation*, retrying only on ``TransientNetworkError``.

    Any other exception propagates immediately. After the last attempt the
    final ``TransientNetworkError`` is re-raised.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()
    attempt = 1
    while True:
        try:
            return operation()
        except TransientNetworkError as exc:
            if attempt > len(delays):
                logger.warning("%s failed after %d attempts: %s", description, attempt, exc)
                raise
            delay = delays[attempt - 1]
            logger.info(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
