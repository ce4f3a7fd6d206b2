"""
Rate Limit Handler for the exchange client

This module paces exchange API calls. It enforces a minimum spacing between
requests and tracks the remaining request quota the exchange reports in its
response headers. When the quota drops below a safety threshold, the next
caller pauses until the quota window resets instead of getting throttled.

Usage:
    from rate_limit_handler import RateLimitHandler, RateLimitedExchange

    handler = RateLimitHandler(min_interval=1.0, remaining_threshold=10)
    exchange = RateLimitedExchange(ccxt.kucoin({"enableRateLimit": True}), handler)

    # Paced, and the quota headers are recorded after the call
    ohlcv = exchange.fetch_ohlcv("BTC3L/USDT", "15m", limit=100)
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class RateLimitHandler:
    """Paces API calls by spacing and by the exchange-reported remaining quota."""

    def __init__(
        self,
        min_interval: float = 1.0,
        remaining_threshold: int = 10,
        default_reset_seconds: float = 30.0,
        remaining_header: str = "gw-ratelimit-remaining",
        reset_header: str = "gw-ratelimit-reset",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the rate limit handler.

        Args:
            min_interval: Minimum delay between API calls (seconds)
            remaining_threshold: Pause when fewer requests than this remain
            default_reset_seconds: Quota window length when the exchange
                                   does not report a reset time
            remaining_header: Response header carrying the remaining quota
            reset_header: Response header carrying milliseconds until reset
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        self.min_interval = min_interval
        self.remaining_threshold = remaining_threshold
        self.default_reset_seconds = default_reset_seconds
        self.remaining_header = remaining_header.lower()
        self.reset_header = reset_header.lower()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._pace_lock = threading.Lock()

        self.last_call_time: Optional[float] = None
        self.remaining: Optional[int] = None
        self.reset_at: Optional[float] = None
        self.total_calls = 0
        self.quota_pauses = 0
        self.total_wait_seconds = 0.0

    def _quota_exhausted(self) -> bool:
        return self.remaining is not None and self.remaining < self.remaining_threshold

    def wait_if_needed(self) -> float:
        """
        Block until the next request may be sent.

        Callers queue on the pacing lock. The state lock is only held between
        sleeps, so ``get_stats`` and header updates never wait out a pause.

        Returns:
            Seconds spent waiting
        """
        with self._pace_lock:
            waited = 0.0
            pause = 0.0

            with self._lock:
                exhausted = self._quota_exhausted()
                if exhausted:
                    pause = self.reset_delay()
                    logger.warning(
                        "Exchange quota low (%s remaining < %d); pausing %.1fs until reset",
                        self.remaining, self.remaining_threshold, pause,
                    )
                    self.quota_pauses += 1

            if pause > 0:
                self._sleep(pause)
                waited += pause

            with self._lock:
                if exhausted:
                    # The window has reset; the next response reports the new quota
                    self.remaining = None
                    self.reset_at = None
                last_call = self.last_call_time
                now = self._clock()

            if last_call is not None and now - last_call < self.min_interval:
                spacing = self.min_interval - (now - last_call)
                self._sleep(spacing)
                waited += spacing

            with self._lock:
                self.last_call_time = self._clock()
                self.total_calls += 1
                self.total_wait_seconds += waited
            return waited

    def reset_delay(self, now: Optional[float] = None) -> float:
        """Seconds until the quota window resets."""
        if now is None:
            now = self._clock()
        if self.reset_at is None:
            return self.default_reset_seconds
        return max(0.0, self.reset_at - now)

    def update_from_headers(self, headers: Optional[Mapping[str, Any]]) -> None:
        """Record the remaining quota and reset time reported by the exchange."""
        if not headers:
            return

        lowered = {str(k).lower(): v for k, v in headers.items()}
        remaining_raw = lowered.get(self.remaining_header)
        if remaining_raw is None:
            return

        try:
            remaining = int(float(remaining_raw))
        except (TypeError, ValueError):
            logger.debug("Ignoring unparseable %s header: %r", self.remaining_header, remaining_raw)
            return

        reset_seconds = self.default_reset_seconds
        reset_raw = lowered.get(self.reset_header)
        if reset_raw is not None:
            try:
                reset_seconds = float(reset_raw) / 1000.0
            except (TypeError, ValueError):
                logger.debug("Ignoring unparseable %s header: %r", self.reset_header, reset_raw)

        with self._lock:
            self.remaining = remaining
            self.reset_at = self._clock() + reset_seconds

        if remaining < self.remaining_threshold:
            logger.info("Exchange quota nearly exhausted: %d remaining, resets in %.1fs",
                        remaining, reset_seconds)

    def execute(
        self,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any
    ) -> Any:
        """
        Execute a function after pacing it.

        Args:
            func: The function to call (e.g., exchange.fetch_ohlcv)
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            The result of the function call
        """
        self.wait_if_needed()
        return func(*args, **kwargs)

    def get_stats(self) -> Dict[str, Any]:
        """Raw counters for the debug endpoint."""
        with self._lock:
            return {
                "total_calls": self.total_calls,
                "quota_pauses": self.quota_pauses,
                "total_wait_seconds": round(self.total_wait_seconds, 3),
                "remaining": self.remaining,
                "remaining_threshold": self.remaining_threshold,
                "reset_in_seconds": round(self.reset_delay(), 3) if self.reset_at is not None else None,
                "min_interval": self.min_interval,
            }


class RateLimitedExchange:
    """Wrapper for exchange objects that adds pacing and quota tracking to API calls."""

    def __init__(self, exchange: Any, handler: Optional[RateLimitHandler] = None) -> None:
        """
        Initialize rate-limited exchange wrapper.

        Args:
            exchange: The exchange object (e.g., ccxt exchange)
            handler: Optional custom RateLimitHandler instance
        """
        self._exchange = exchange
        self._handler = handler or RateLimitHandler()

    @property
    def handler(self) -> RateLimitHandler:
        return self._handler

    def __getattr__(self, name: str) -> Any:
        """
        Intercept method calls and wrap API methods with pacing.
        """
        attr = getattr(self._exchange, name)

        if callable(attr) and (name.startswith('fetch_') or name == 'load_markets'):
            def wrapped(*args: Any, **kwargs: Any) -> Any:
                try:
                    return self._handler.execute(attr, *args, **kwargs)
                finally:
                    self._handler.update_from_headers(
                        getattr(self._exchange, 'last_response_headers', None)
                    )
            return wrapped

        return attr
