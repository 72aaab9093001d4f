"""
Retry with exponential backoff.

Delay doubles after every failed attempt and is capped:
``min(initial_delay * 2 ** (attempt - 1), max_delay)``. With the
defaults (3 attempts, 2s, 30s) a failing call waits 2s, then 4s, then
gives up and re-raises the last error.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from containerbuild.core.models.build import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between."""

    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0          # fraction of the delay added at random

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay


def retry_with_backoff(
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Callable[[BaseException], bool] | None = None,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it returns without raising.

    Args:
        fn: Zero-argument callable.
        policy: Attempts and delays (default: 3 attempts, 2s doubling to 30s).
        retry_on: Exception types that trigger another attempt.
        should_retry: Optional predicate; returning False re-raises at once.
        description: Used in log messages.
        sleep: Injected for tests.

    Returns:
        Whatever ``fn`` returned.

    Raises:
        The last exception raised by ``fn``.
    """
    policy = policy or RetryPolicy()
    label = description or getattr(fn, "__name__", "operation")

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = fn()
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", label, attempt)
            return result
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", label, attempt, e)
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.0fs",
                label,
                attempt,
                policy.max_attempts,
                e,
                delay,
            )
            sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover


def retry_command(
    description: str,
    fn: Callable[[], T],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """``retry_with_backoff`` with start/success logging around it."""
    logger.info("Attempting: %s", description)
    result = retry_with_backoff(fn, policy, description=description, sleep=sleep)
    logger.info("✓ %s", description)
    return result


def retry_on_error(
    fn: Callable[[], tuple[bool, str]],
    match: str,
    policy: RetryPolicy | None = None,
    *,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[bool, str]:
    """Retry a pass/fail call only while its output contains ``match``.

    ``fn`` returns ``(ok, output)``. A failure whose output does not
    mention ``match`` is returned immediately: only the one named,
    known-transient error is worth waiting out.
    """
    policy = policy or RetryPolicy()
    label = description or "operation"
    ok, output = False, ""

    for attempt in range(1, policy.max_attempts + 1):
        ok, output = fn()
        if ok:
            return ok, output
        if match not in output:
            logger.error("%s failed: %s", label, output.strip()[-300:])
            return ok, output
        if attempt >= policy.max_attempts:
            break
        delay = policy.delay_for(attempt)
        logger.warning(
            "%s hit '%s' (attempt %d/%d), retrying in %.0fs",
            label,
            match,
            attempt,
            policy.max_attempts,
            delay,
        )
        sleep(delay)

    logger.error("%s still failing with '%s' after %d attempts", label, match, policy.max_attempts)
    return ok, output
