"""
Bounded exponential-backoff retry for flaky asynchronous calls.

A :class:`RetryPolicy` is a plain configuration value; a :class:`RetryExecutor` built from it can be
shared and reused, each :meth:`RetryExecutor.execute` call running independently.
"""

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    TypeVar,
)

import anthropic
import httpx
import openai
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from troupe.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = frozenset({429})


def _status_code(exc: BaseException) -> Optional[int]:
    """HTTP status carried by *exc* (httpx, openai and anthropic errors all expose one)."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_transient_error(exc: BaseException) -> bool:
    """
    Return *True* for failures worth retrying: lost connections, timeouts, HTTP 5xx and HTTP 429.
    """
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True

    status = _status_code(exc)
    if status is not None:
        return status in _RETRYABLE_STATUS or 500 <= status < 600

    # SDK connection/timeout errors wrap the transport failure without a status code
    return isinstance(exc, (openai.APIConnectionError, anthropic.APIConnectionError))


class RetryPolicy(BaseModel):
    """Backoff configuration: how often to retry, how long to wait, and which errors qualify."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0)
    initial_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(60.0, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    should_retry: Callable[[BaseException], bool] = is_transient_error

    @classmethod
    def default(cls) -> "RetryPolicy":
        return cls()

    @classmethod
    def conservative(cls) -> "RetryPolicy":
        return cls(max_retries=1, initial_delay=2.0, max_delay=10.0)

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        return cls(max_retries=5, initial_delay=0.5, max_delay=30.0)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )


class RetryExecutor:
    """Run an async operation, retrying it according to a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy.default()
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (``attempt`` is zero-based)."""
        delay = self.policy.initial_delay * self.policy.backoff_multiplier**attempt
        return min(delay, self.policy.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
    ) -> T:
        """
        Await ``operation()`` until it succeeds, the error is not retryable, or the retry budget is
        spent.  The last error is re-raised unchanged.

        Parameters
        ----------
        operation:
            Zero-argument callable producing a fresh awaitable per attempt.
        on_retry:
            Called as ``on_retry(attempt, error, delay)`` before each backoff sleep, where
            ``attempt`` is the 1-based number of the retry about to happen.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                if attempt >= self.policy.max_retries or not self.policy.should_retry(exc):
                    raise
                delay = self.delay_for(attempt)
                attempt += 1
                logger.warning(
                    "Attempt %d/%d failed (%s: %s); retrying in %.2fs",
                    attempt,
                    self.policy.max_retries + 1,
                    type(exc).__name__,
                    exc,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                await self._sleep(delay)
