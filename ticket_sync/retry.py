"""Backoff for transport-level failures, built on tenacity."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()


def _announce_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        outcome = state.outcome
        exc = outcome.exception() if outcome is not None else None
        logger.warning(
            "transport_retry_scheduled",
            operation=operation,
            attempt=state.attempt_number,
            wait_seconds=round(state.next_action.sleep, 3) if state.next_action else None,
            error=str(exc) or type(exc).__name__ if exc is not None else None,
        )

    return before_sleep


def transport_retry(
    config: RetryConfig,
    *,
    retry_on: tuple[type[BaseException], ...],
    operation: str,
) -> Callable:
    """Decorator that re-runs a call failing with one of *retry_on*.

    Anything else propagates on the first attempt.  Once
    ``config.max_attempts`` is used up the last error is re-raised as is,
    so callers see the transport exception, never a ``RetryError``.
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_announce_retry(operation),
        reraise=True,
    )
