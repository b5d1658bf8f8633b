"""Retry wrapper for notification hand-off.

Provides retry_call() -- capped exponential backoff around any callable,
built on tenacity.Retrying so the policy is configurable per call site
(the dispatcher passes its RetryConfig).

An operation fails when it raises an exception accepted by
``should_retry`` or when it returns ``False`` (a channel reporting that it
did not deliver). Any other return value is success.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

import tenacity

from grainwatch.exceptions import RetryExhaustedError
from grainwatch.models.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_should_retry(exc: BaseException) -> bool:
    """Retry unless the error says it cannot succeed (``retryable=False``)."""
    return bool(getattr(exc, "retryable", True))


def backoff_delays(config: RetryConfig) -> list[float]:
    """Delays slept between attempts: ``min(base * backoff**k, max_delay)``."""
    return [
        min(config.base_delay * config.backoff**k, config.max_delay)
        for k in range(config.max_attempts - 1)
    ]


def retry_call(
    operation: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``operation(*args, **kwargs)`` with capped exponential backoff.

    Args:
        operation: The callable to run.
        config: Attempt count and backoff settings (defaults to RetryConfig()).
        should_retry: Predicate deciding whether an exception is transient.
            Exceptions it rejects propagate immediately, unwrapped.
        sleep: Injected for tests; receives each backoff delay in seconds.

    Returns:
        The first successful result.

    Raises:
        RetryExhaustedError: Every attempt failed. ``last_error`` holds the
            final exception, or None if the final attempt returned False.
    """
    cfg = config or RetryConfig()
    retryer = tenacity.Retrying(
        retry=(
            tenacity.retry_if_exception(should_retry)
            | tenacity.retry_if_result(lambda result: result is False)
        ),
        wait=tenacity.wait_exponential(
            multiplier=cfg.base_delay,
            exp_base=cfg.backoff,
            min=0,
            max=cfg.max_delay,
        ),
        stop=tenacity.stop_after_attempt(cfg.max_attempts),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )
    try:
        return retryer(operation, *args, **kwargs)
    except tenacity.RetryError as exc:
        last = exc.last_attempt
        error = last.exception() if last.failed else None
        raise RetryExhaustedError(cfg.max_attempts, error) from error
