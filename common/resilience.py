#!/usr/bin/env python3
"""
Resilience patterns for reliable API operations.

Provides one retry policy shared by the exchange client (KuCoin via ccxt)
and the Telegram notifier, plus the backoff functions and the transient
error classification it is parameterized with.

Patterns implemented:
- Linear and constant backoff
- Configurable retry logic with failure classification
- Provider rate-limit hints (retry-after) that delay without using an attempt

Usage:
    from common.resilience import RetryPolicy, linear_backoff, is_transient_error

    policy = RetryPolicy(
        max_attempts=3,
        backoff=linear_backoff(5.0),
        is_retryable=is_transient_error,
        name="fetch_ohlcv",
    )
    candles = policy.call(exchange.fetch_ohlcv, "BTC3L/USDT", "15m")
"""

import logging
import time
from typing import Any, Callable, Optional, TypeVar

import ccxt  # type: ignore[import-untyped]


logger = logging.getLogger(__name__)

T = TypeVar('T')

BackoffFn = Callable[[int], float]
RetryAfterFn = Callable[[Exception], Optional[float]]


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if an exception represents a transient (retryable) error.

    Transient errors are temporary failures that may succeed on retry:
    - Network errors (timeouts, connection refused, DNS failures)
    - Rate limit errors (429 Too Many Requests)
    - Server errors (500, 502, 503, 504)

    Non-transient errors (should NOT retry):
    - Authentication errors (401, 403)
    - Invalid requests (400, 404)
    - Business logic errors (invalid symbol)

    Args:
        exception (Exception): Exception to classify

    Returns:
        bool: True if error is transient and should be retried
    """
    # RateLimitExceeded, DDoSProtection, RequestTimeout and
    # ExchangeNotAvailable all derive from NetworkError
    if isinstance(exception, ccxt.NetworkError):
        return True

    if isinstance(exception, ccxt.ExchangeError):
        error_msg = str(exception).lower()
        transient_indicators = [
            '429',
            '500',
            '502',
            '503',
            '504',
            'timeout',
            'timed out',
            'connection',
            'network',
        ]
        return any(indicator in error_msg for indicator in transient_indicators)

    # requests exceptions derive from OSError
    network_errors = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    return isinstance(exception, network_errors)


def is_rate_limit_error(exception: Exception) -> bool:
    """True for provider throttling responses from the exchange."""
    return isinstance(exception, (ccxt.RateLimitExceeded, ccxt.DDoSProtection))


def linear_backoff(base_delay: float) -> BackoffFn:
    """
    Backoff growing linearly with the attempt number.

    Example:
        >>> backoff = linear_backoff(10.0)
        >>> [backoff(n) for n in (1, 2, 3)]
        [10.0, 20.0, 30.0]
    """
    def backoff(attempt: int) -> float:
        return float(base_delay * attempt)
    return backoff


def constant_backoff(delay: float) -> BackoffFn:
    """Backoff that waits the same delay after every failed attempt."""
    def backoff(attempt: int) -> float:
        return float(delay)
    return backoff


class RetryPolicy:
    """
    Retry a callable with a configurable backoff and error classification.

    Behavior:
        1. Call the function; return its result on success.
        2. On failure, ask ``retry_after`` for a provider wait hint. When it
           returns a value (rate limit), sleep that long and retry without
           consuming an attempt, at most ``max_rate_limit_waits`` times.
        3. Otherwise count the attempt. Non-retryable errors are re-raised
           as-is; a retryable error on the last attempt raises RetryError.
        4. Sleep ``backoff(attempt)`` (attempt is 1-based) and try again.

    Args:
        max_attempts (int): Total attempts including the first call.
        backoff (Callable[[int], float]): Delay after the n-th failed attempt.
        is_retryable (Callable[[Exception], bool]): Failure classification.
                                                   Defaults to is_transient_error.
        retry_after (Optional[Callable]): Returns a wait hint in seconds for
                                          rate-limit errors, None otherwise.
        max_rate_limit_waits (int): Bound on attempt-free rate-limit waits.
        name (str): Operation name for logging.
        sleep (Callable[[float], None]): Sleep function (injectable for tests).

    Example:
        >>> policy = RetryPolicy(max_attempts=5, backoff=linear_backoff(10.0),
        ...                      name="load_markets")
        >>> markets = policy.call(exchange.load_markets, True)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Optional[BackoffFn] = None,
        is_retryable: Optional[Callable[[Exception], bool]] = None,
        retry_after: Optional[RetryAfterFn] = None,
        max_rate_limit_waits: int = 3,
        name: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or linear_backoff(1.0)
        self.is_retryable = is_retryable or is_transient_error
        self.retry_after = retry_after
        self.max_rate_limit_waits = max_rate_limit_waits
        self.name = name
        self.sleep = sleep

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute ``func`` under this policy.

        Raises:
            RetryError: If a retryable error persists through every attempt
            Exception: The original exception if it is not retryable
        """
        attempt = 0
        rate_limit_waits = 0

        while True:
            try:
                result = func(*args, **kwargs)
                if attempt > 0 or rate_limit_waits > 0:
                    logger.info(
                        "%s succeeded after %d failed attempt(s) and %d rate-limit wait(s)",
                        self.name, attempt, rate_limit_waits,
                    )
                return result

            except Exception as e:
                hint = self.retry_after(e) if self.retry_after else None
                if hint is not None and rate_limit_waits < self.max_rate_limit_waits:
                    rate_limit_waits += 1
                    logger.warning(
                        "%s rate limited (wait %d/%d). Waiting %.1fs before retrying: %s",
                        self.name, rate_limit_waits, self.max_rate_limit_waits, hint, str(e)[:200],
                    )
                    self.sleep(hint)
                    continue

                attempt += 1

                if not self.is_retryable(e):
                    logger.error("%s failed with non-retryable error: %s", self.name, e)
                    raise

                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed after %d attempts. Last error: %s",
                        self.name, attempt, e,
                    )
                    raise RetryError(
                        f"{self.name} failed after {attempt} attempts: {e}",
                        attempts=attempt,
                        last_error=e,
                    ) from e

                delay = self.backoff(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                    self.name, attempt, self.max_attempts, str(e)[:200], delay,
                )
                self.sleep(delay)
