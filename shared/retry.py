"""
retry.py - Exponential backoff executor for broker calls.

Runs an operation, retrying on transient failures with exponential backoff
plus jitter, and gives up after a bounded number of attempts:

    delay(attempt) = min(base_delay * backoff_multiplier ** attempt, max_delay)
                     + uniform(0, delay * jitter_factor)

Non-retryable errors abort immediately without sleeping. Whatever the
outcome, a final failure is re-raised as ApiError naming the operation and
the number of attempts made.

Usage:
    executor = BackoffExecutor(RetryConfig(max_retries=3))
    markets = executor.execute(lambda: client.search_markets("US 500"), "search_markets")
"""

import logging
import random
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

import requests

from shared.errors import ApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_error(error: BaseException) -> bool:
    """
    Default retryable predicate.

    Network-level failures (connection reset/refused, DNS, timeouts) and
    broker errors flagged transient (HTTP 5xx, 429) are retried. Everything
    else, including auth-expiry codes, is not: auth expiry is handled by the
    session client's replay, outside the backoff budget.
    """
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(error, ApiError):
        return error.transient
    return False


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings. max_retries counts retries, not attempts."""
    max_retries: int = 3
    base_delay: float = 1.0        # seconds
    max_delay: float = 30.0        # seconds
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    retryable: Callable[[BaseException], bool] = field(default=is_transient_error, compare=False)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryConfig":
        """Build from the optional "retry" config section."""
        section = config.get("retry", {}) or {}
        return cls(
            max_retries=int(section.get("max_retries", cls.max_retries)),
            base_delay=float(section.get("base_delay", cls.base_delay)),
            max_delay=float(section.get("max_delay", cls.max_delay)),
            backoff_multiplier=float(section.get("backoff_multiplier", cls.backoff_multiplier)),
            jitter_factor=float(section.get("jitter_factor", cls.jitter_factor)),
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay (without jitter) after the given zero-based attempt."""
        return min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()


class BackoffExecutor:
    """
    Stateless retry wrapper.

    The only side effects are the sleeps between attempts and the wrapped
    operation itself. `sleep` is injectable so tests do not wait.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.config = config or DEFAULT_RETRY_CONFIG
        self._sleep = sleep

    def _jittered(self, delay: float) -> float:
        if self.config.jitter_factor <= 0:
            return delay
        return delay + random.uniform(0, delay * self.config.jitter_factor)

    def execute(self, operation: Callable[[], T], name: str) -> T:
        """
        Run `operation`, retrying retryable failures.

        Args:
            operation: Zero-argument callable performing one attempt
            name: Operation name used in logs and in the final error

        Returns:
            Whatever the operation returns on its first successful attempt.

        Raises:
            ApiError: once retries are exhausted or on a non-retryable error.
        """
        config = self.config
        attempt = 0
        while True:
            if attempt > 0:
                logger.debug(f"Retry attempt {attempt}/{config.max_retries} for {name}")
            try:
                return operation()
            except Exception as e:
                retryable = config.retryable(e)
                if attempt >= config.max_retries or not retryable:
                    attempts = attempt + 1
                    if not retryable:
                        logger.debug(f"Non-retryable error for {name}: {e}")
                    logger.error(f"{name} failed after {attempts} attempt(s): {e}")
                    raise self._wrap(e, name, attempts) from e

                delay = self._jittered(config.delay_for(attempt))
                logger.warning(
                    f"{name} failed (attempt {attempt + 1}/{config.max_retries + 1}): {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                self._sleep(delay)
                attempt += 1

    @staticmethod
    def _wrap(error: Exception, name: str, attempts: int) -> ApiError:
        status_code = getattr(error, "status_code", None)
        error_code = getattr(error, "error_code", None)
        return ApiError(
            f"{name} failed after {attempts} attempt(s): {error}",
            status_code=status_code,
            cause=error,
            error_code=error_code,
            attempts=attempts,
        )


def with_backoff(name: str, config: Optional[RetryConfig] = None):
    """Decorator form of BackoffExecutor.execute for plain functions."""
    executor = BackoffExecutor(config)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return executor.execute(lambda: func(*args, **kwargs), name)
        return wrapper

    return decorator
