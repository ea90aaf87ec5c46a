"""Retry and backoff policy for outbound provider calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from ..config import Settings
from ..errors import RetryableProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.1
    timeout: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
            timeout=settings.provider_timeout_seconds,
        )


def as_retryable(exc: BaseException) -> RetryableProviderError | None:
    """Classify ``exc``; returns the retryable form, or None if it is terminal."""
    if isinstance(exc, RetryableProviderError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return RetryableProviderError(f"Request timeout: {exc}")
    if isinstance(exc, httpx.TransportError):
        return RetryableProviderError(f"Connection error: {exc}")
    return None


class RetryController:
    """Wraps provider calls with bounded retries and per-key coalescing.

    - Retryable failures (timeouts, 5xx, rate limits) are retried up to
      ``max_retries`` times with exponential backoff plus jitter.
    - Terminal failures propagate unchanged on the first occurrence.
    - A call that hits the timeout budget is retried once; a second timeout
      is final.
    - While a call for ``key`` is in flight, further calls with the same key
      await its result instead of issuing a duplicate request.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._inflight: dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def call(self, key: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        existing = self._inflight.get(key)
        if existing is not None:
            logger.info(f"Coalescing duplicate call for {key}")
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(self._run(key, func, args, kwargs))
        self._inflight[key] = task

        def _release(done: asyncio.Future) -> None:
            if self._inflight.get(key) is done:
                del self._inflight[key]

        task.add_done_callback(_release)
        return await asyncio.shield(task)

    def compute_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = min(self.policy.base_delay * (2 ** (attempt - 1)), self.policy.max_delay)
        delay += delay * self._rng.uniform(0, self.policy.jitter)
        if retry_after is not None:
            delay = max(delay, min(retry_after, self.policy.max_delay))
        return delay

    async def _run(self, key: str, func, args, kwargs) -> Any:
        attempt = 0
        timeouts = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs), timeout=self.policy.timeout
                )
            except asyncio.TimeoutError:
                timeouts += 1
                error = RetryableProviderError(
                    f"{key} timed out after {self.policy.timeout}s"
                )
                if timeouts > 1:
                    logger.error(f"{key} timed out twice, giving up")
                    raise error
            except Exception as exc:
                error = as_retryable(exc)
                if error is None:
                    raise
                if error is not exc:
                    error.__cause__ = exc

            if attempt > self.policy.max_retries:
                logger.error(f"{key} failed after {attempt} attempts: {error.message}")
                raise error

            delay = self.compute_delay(attempt, error.retry_after)
            logger.warning(
                f"{key} failed ({error.message}), retrying in {delay:.2f}s "
                f"(attempt {attempt}/{self.policy.max_retries + 1})"
            )
            await self._sleep(delay)
