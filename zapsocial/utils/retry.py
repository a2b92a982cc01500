"""
Retry with exponential backoff for calls to platform APIs.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from zapsocial.exceptions import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Graph API error codes
GRAPH_RATE_LIMIT_CODE = 613
GRAPH_INVALID_TOKEN_CODE = 190


def _always_retry(error: BaseException) -> bool:
    return True


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    The operation runs at most ``max_retries + 1`` times. After each failure
    the policy gives up if the retry budget is spent or ``should_retry``
    rejects the error; otherwise it sleeps ``delay_ms`` and multiplies the
    delay by ``backoff_multiplier``. The delay is not capped.
    """

    max_retries: int = 3
    delay_ms: float = 300
    backoff_multiplier: float = 2
    should_retry: Callable[[BaseException], bool] = _always_retry
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        delay = self.delay_ms
        attempt = 0

        while True:
            try:
                return await fn()
            except Exception as e:
                if attempt >= self.max_retries or not self.should_retry(e):
                    raise

                attempt += 1
                logger.debug(
                    "Attempt %d failed (%s), retrying in %sms",
                    attempt,
                    e,
                    delay,
                )
                await self.sleep(delay / 1000)
                delay *= self.backoff_multiplier


async def retry(fn: Callable[[], Awaitable[T]], **options: Any) -> T:
    """Run ``fn`` under a RetryPolicy built from ``options``."""
    return await RetryPolicy(**options).run(fn)


def is_retryable_error(error: BaseException | None) -> bool:
    """
    Classify an error from a platform call.

    Rate limits, network failures and 5xx responses are retryable. Token
    expiry and other 4xx responses are not.
    """
    if error is None:
        return False

    if isinstance(error, httpx.TransportError):
        return True

    if not isinstance(error, ProviderError):
        return False

    if is_rate_limit_error(error):
        return True

    if error.status_code is not None and 500 <= error.status_code < 600:
        return True

    return False


def is_rate_limit_error(error: BaseException | None) -> bool:
    """Check whether a provider error is a rate limit."""
    if not isinstance(error, ProviderError):
        return False

    if error.code == GRAPH_RATE_LIMIT_CODE or error.status_code == 429:
        return True

    message = (error.message or "").lower()
    return "rate limit" in message or "too many requests" in message


def is_token_expired(error: BaseException | None) -> bool:
    """Check whether a provider error means the access token is no longer valid."""
    if not isinstance(error, ProviderError):
        return False

    if error.code == GRAPH_INVALID_TOKEN_CODE:
        return True

    message = (error.message or "").lower()
    return "expired" in message or "invalid token" in message or "access token" in message
