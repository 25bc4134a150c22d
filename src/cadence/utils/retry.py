"""
Backoff for opening provider streams.

Only the request that opens a stream is retried. Once chunks are flowing a
failure propagates to the agent loop, which never retries on its own: a
half-consumed stream cannot be replayed without duplicating output.
"""

import os
import asyncio
import logging
import random
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Provider status codes worth another attempt (529 is Anthropic "overloaded")
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 529})

TRANSIENT_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "network",
    "unreachable",
    "unavailable",
    "temporarily",
    "overloaded",
)


@dataclass(frozen=True)
class RetryConfig:
    """Attempts and delays for opening a stream"""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "60.0")),
            exponential_base=float(os.getenv("RETRY_BACKOFF_BASE", "2.0")),
        )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (0-indexed)"""
        return calculate_delay(attempt, self.base_delay, self.exponential_base, self.max_delay, self.jitter)


def _status_code(error: Exception) -> Optional[int]:
    """Status code carried by SDK (``status_code``) or httpx (``response``) errors"""
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def is_retryable_error(error: Exception) -> bool:
    """
    Whether opening the stream again might succeed.

    A known status code decides on its own. Without one, connection-level
    exception types and transient-sounding messages are retried.
    """
    code = _status_code(error)
    if code is not None:
        return code in RETRYABLE_STATUS_CODES

    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    message = str(error).lower()
    if any(f"status code {code}" in message for code in RETRYABLE_STATUS_CODES):
        return True
    return any(marker in message for marker in TRANSIENT_MARKERS)


def calculate_delay(
    attempt: int,
    base_delay: float,
    exponential_base: float,
    max_delay: float,
    jitter: bool
) -> float:
    """
    Exponential delay capped at ``max_delay``.

    With jitter the delay is scaled into [50%, 100%] of its nominal value.
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    **overrides: Any,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry an async call on transient provider errors.

    Without ``config`` the settings are read from the environment on each
    call (MAX_RETRIES, RETRY_BASE_DELAY, RETRY_MAX_DELAY, RETRY_BACKOFF_BASE).
    Keyword overrides replace single fields, e.g.
    ``@retry_with_backoff(max_retries=1, jitter=False)``.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            settings = replace(config or RetryConfig.from_env(), **overrides)

            for attempt in range(settings.attempts):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_error(e):
                        logger.debug(f"{func.__qualname__}: not retrying {type(e).__name__}: {e}")
                        raise
                    if attempt + 1 >= settings.attempts:
                        logger.error(f"{func.__qualname__} failed after {settings.attempts} attempts: {e}")
                        raise

                    delay = settings.delay_for(attempt)
                    logger.warning(
                        f"{func.__qualname__} attempt {attempt + 1}/{settings.attempts} failed, "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    continue

                if attempt > 0:
                    logger.info(f"{func.__qualname__} succeeded on attempt {attempt + 1}")
                return result

            raise RuntimeError("unreachable: retry loop exited without result")

        return wrapper

    return decorator
