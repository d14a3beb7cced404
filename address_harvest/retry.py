"""Tenacity retry wrapper driven by RetryConfig."""

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


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0,
        error=str(exc),
    )


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    reraise: bool = True,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    With ``reraise=False`` an exhausted budget raises
    :class:`tenacity.RetryError`, whose ``last_attempt`` carries the final
    exception and attempt number.

    Usage::

        @with_retry(config.retry, retryable_exceptions=(MailboxConnectionError,))
        def fetch() -> list[MessageSummary]: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_before_sleep,
        reraise=reraise,
    )
