"""Retry policy shared by the media store and the sync orchestrator."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from convo_vault.errors import DownloadError
from convo_vault.logging import get_logger

logger = get_logger("retry")

T = TypeVar("T")


def is_rate_limited(exc: BaseException) -> bool:
    """True for HTTP 429 download failures."""
    return isinstance(exc, DownloadError) and exc.is_rate_limited


TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)


def is_timeout(exc: BaseException) -> bool:
    """True for timeout exceptions, including ones wrapped by a provider."""
    return isinstance(exc, TIMEOUT_ERRORS) or isinstance(exc.__cause__, TIMEOUT_ERRORS)


@dataclass
class RetryPolicy:
    """Exponential backoff parameterized by an error predicate.

    The n-th retry (n starting at 0) waits ``base_delay * 2**n`` seconds.
    At most ``max_retries`` retries are made, after which the last error is
    re-raised unchanged.
    """

    predicate: Callable[[BaseException], bool]
    max_retries: int = 3
    base_delay: float = 5.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    label: str = "request"

    def delays(self) -> list[float]:
        """The backoff schedule this policy would follow."""
        return [self.base_delay * 2**attempt for attempt in range(self.max_retries)]

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Retrying %s: attempt=%d/%d delay=%.1fs error=%s",
            self.label,
            retry_state.attempt_number,
            self.max_retries,
            delay,
            exc,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)``, retrying errors the predicate accepts."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            retry=retry_if_exception(self.predicate),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)


def media_retry_policy(
    max_retries: int = 3,
    base_delay: float = 5.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryPolicy:
    """429-only policy used for attachment downloads."""
    return RetryPolicy(
        predicate=is_rate_limited,
        max_retries=max_retries,
        base_delay=base_delay,
        sleep=sleep,
        label="download",
    )


def fetch_retry_policy(
    max_retries: int = 2,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryPolicy:
    """Timeout-only policy used for full conversation fetches."""
    return RetryPolicy(
        predicate=is_timeout,
        max_retries=max_retries,
        base_delay=base_delay,
        sleep=sleep,
        label="fetch",
    )
