#!/usr/bin/env python

"""Exponential backoff policies, applied with tenacity."""

import logging
import random

from typing import Awaitable, Callable, NamedTuple, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .errors import is_retryable

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Backoff(NamedTuple):
    """
    An exponential backoff policy.

    The n-th sleep (zero based) lasts duration * factor ** n, perturbed by +/- jitter * that value, and bounded by
    cap. steps is the number of sleeps; a policy permits steps + 1 attempts.
    """

    duration: float
    factor: float
    jitter: float
    steps: int
    cap: Optional[float] = None

    def attempts(self) -> int:
        """Returns the total number of attempts permitted by this policy."""
        return self.steps + 1

    def sleep(self, step: int, *, rand: Callable[[], float] = random.random) -> float:
        """
        Computes the sleep duration before the given retry.

        Args:
            step: The zero based index of the sleep.
            rand: Source of uniform random values in [0, 1).

        Returns:
            The number of seconds to sleep.
        """
        result = self.duration * self.factor ** step
        if self.jitter:
            result += result * self.jitter * (2 * rand() - 1)
        if self.cap is not None:
            result = min(result, self.cap)
        return max(result, 0.0)


DEFAULT_BACKOFF = Backoff(duration=1.0, factor=3.0, jitter=0.1, steps=3)


def gcr_backoff() -> Backoff:
    """
    Returns the backoff policy calibrated for rate limited registries; sleeps of ~6s, ~60s and ~10m.
    """
    return Backoff(duration=6.0, factor=10.0, jitter=0.1, steps=3, cap=3600.0)


class wait_backoff(wait_base):  # pylint: disable=invalid-name
    """Tenacity wait strategy that follows a Backoff policy."""

    def __init__(self, backoff: Backoff):
        self.backoff = backoff

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.backoff.sleep(retry_state.attempt_number - 1)


def _log_retry(retry_state: RetryCallState):
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    LOGGER.warning(
        "Retrying %s (attempt %d) after %s: %s; sleeping %.2fs",
        getattr(retry_state.fn, "__name__", "operation"),
        retry_state.attempt_number,
        type(exception).__name__,
        exception,
        retry_state.next_action.sleep if retry_state.next_action else 0,
    )


async def retry(
    func: Callable[[], Awaitable[T]],
    *,
    backoff: Backoff = DEFAULT_BACKOFF,
    predicate: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """
    Invokes an asynchronous callable, retrying it while it fails with retryable errors.

    Args:
        func: Callable that returns the awaitable to be executed; invoked once per attempt.
        backoff: The backoff policy.
        predicate: Decides if a given error may be retried.

    Returns:
        The result of the first successful attempt. The last error is raised once the policy is exhausted.
    """
    async for attempt in AsyncRetrying(
        before_sleep=_log_retry,
        reraise=True,
        retry=retry_if_exception(predicate),
        stop=stop_after_attempt(backoff.attempts()),
        wait=wait_backoff(backoff),
    ):
        with attempt:
            return await func()
    # Unreachable; AsyncRetrying either returns or raises.
    raise AssertionError("retry exhausted without an outcome")
