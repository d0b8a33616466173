"""Retry policy: bounded exponential backoff with jitter.

Every network-bound call (remote sync and AI requests) goes through
:class:`RetryPolicy`. Callers pass a classifier deciding which errors are
worth retrying; anything else is re-raised on the first failure without
waiting.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from automate_pos.config import Config
from automate_pos.sync.errors import (
    RemoteError,
    RetryableNetworkError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rate limited, service unavailable, gateway timeout
RETRYABLE_STATUSES = frozenset({429, 503, 504})

JITTER_MS = 200


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Default classifier for remote calls."""
    if isinstance(error, RetryableNetworkError):
        return True
    if isinstance(error, RemoteError):
        return False
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    return _status_of(error) in RETRYABLE_STATUSES


def is_network_error(error: BaseException) -> bool:
    """True when the remote could not be reached at all."""
    if isinstance(error, RetryExhaustedError):
        error = error.last_error
    if isinstance(error, RetryableNetworkError):
        return error.is_network
    return isinstance(
        error, (httpx.TransportError, ConnectionError, TimeoutError)
    )


class RetryPolicy:
    """Run an async operation with retries on transient failures.

    ``max_retries`` counts retries after the first call, so the defaults
    allow four calls in total. Delays grow as
    ``base_delay_ms * backoff_factor ** n`` plus up to 200 ms of jitter.
    """

    def __init__(self, max_retries: int = 3, base_delay_ms: float = 1200,
                 backoff_factor: float = 2.5,
                 classifier: Callable[[BaseException], bool] = is_retryable_error,
                 sleep: Callable[[float], Awaitable] = asyncio.sleep,
                 jitter_ms: float = JITTER_MS):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.backoff_factor = backoff_factor
        self.classifier = classifier
        self.sleep = sleep
        self.jitter_ms = jitter_ms

    @classmethod
    def from_config(cls, **overrides) -> "RetryPolicy":
        """Build a policy from the shared Config retry budget."""
        params = {
            "max_retries": Config.RETRY_MAX_RETRIES,
            "base_delay_ms": Config.RETRY_BASE_DELAY_MS,
            "backoff_factor": Config.RETRY_BACKOFF_FACTOR,
        }
        params.update(overrides)
        return cls(**params)

    def with_classifier(self, classifier) -> "RetryPolicy":
        """Same budget, different notion of what is retryable."""
        return RetryPolicy(
            self.max_retries, self.base_delay_ms, self.backoff_factor,
            classifier, self.sleep, self.jitter_ms,
        )

    async def call(self, operation: Callable[..., Awaitable[T]],
                   *args, **kwargs) -> T:
        delay_ms = self.base_delay_ms
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation(*args, **kwargs)
            except Exception as e:
                if not self.classifier(e):
                    raise
                retries_left = self.max_retries - (attempt - 1)
                if retries_left <= 0:
                    raise RetryExhaustedError(e, attempt) from e
                wait_ms = delay_ms + random.uniform(0, self.jitter_ms)
                logger.warning(
                    "Operation unstable (%s). Retrying in %.0f ms "
                    "(%d retries left)",
                    e, wait_ms, retries_left,
                )
                await self.sleep(wait_ms / 1000.0)
                delay_ms *= self.backoff_factor


async def with_retry(operation: Callable[[], Awaitable[T]],
                     max_retries: int = 3, base_delay_ms: float = 1200,
                     backoff_factor: float = 2.5,
                     classifier: Callable[[BaseException], bool] = is_retryable_error,
                     sleep: Callable[[float], Awaitable] = asyncio.sleep) -> T:
    """Run ``operation`` once, retrying transient failures."""
    policy = RetryPolicy(max_retries, base_delay_ms, backoff_factor,
                         classifier, sleep)
    return await policy.call(operation)
