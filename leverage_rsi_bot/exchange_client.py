"""KuCoin client wrapper: leveraged symbol universe and OHLCV candles, paced and retried."""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Set

import ccxt  # type: ignore[import-untyped]

from common.resilience import (
    RetryError,
    RetryPolicy,
    is_rate_limit_error,
    is_transient_error,
    linear_backoff,
)
from common.types import Candle
from rate_limit_handler import RateLimitedExchange, RateLimitHandler

from .config import BotConfig
from .indicators import CLOSE_WINDOW, InsufficientDataError

logger = logging.getLogger(__name__)


class MarketLoadError(Exception):
    """The symbol universe could not be loaded; the service cannot continue."""


class FetchError(Exception):
    """Candles for one symbol could not be fetched."""


def create_exchange(config: BotConfig) -> ccxt.Exchange:
    """Build the ccxt exchange from configuration."""
    exchange_id = config.exchange.exchange_id
    factory = getattr(ccxt, exchange_id, None)
    if factory is None:
        raise ValueError(f"Unsupported exchange: {exchange_id}")

    params: Dict[str, Any] = {
        "enableRateLimit": True,
        "timeout": int(config.exchange.request_timeout_seconds * 1000),  # ccxt uses milliseconds
    }

    creds = config.get_exchange_credentials(exchange_id)
    if creds.is_configured:
        params["apiKey"] = creds.api_key
        params["secret"] = creds.secret
        if creds.password:
            params["password"] = creds.password
        logger.info("%s credentials configured", exchange_id.upper())

    return factory(params)


def _info_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


class ExchangeClient:
    """Fetches the leveraged token universe and candles through a paced exchange."""

    def __init__(
        self,
        exchange: Any,
        handler: Optional[RateLimitHandler] = None,
        quote_currency: str = "USDT",
        symbol_pattern: str = r"[0-9]+[LS]/USDT$",
        market_load_attempts: int = 5,
        market_load_backoff: float = 10.0,
        fetch_attempts: int = 3,
        fetch_backoff: float = 5.0,
        max_rate_limit_waits: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.exchange = exchange if isinstance(exchange, RateLimitedExchange) else RateLimitedExchange(exchange, handler)
        self.handler = self.exchange.handler
        self.quote_currency = quote_currency
        self.symbol_pattern = re.compile(symbol_pattern)
        self._degraded_logged = False

        self.market_policy = RetryPolicy(
            max_attempts=market_load_attempts,
            backoff=linear_backoff(market_load_backoff),
            is_retryable=is_transient_error,
            retry_after=self._rate_limit_wait,
            max_rate_limit_waits=max_rate_limit_waits,
            name="load_markets",
            sleep=sleep,
        )
        self.fetch_policy = RetryPolicy(
            max_attempts=fetch_attempts,
            backoff=linear_backoff(fetch_backoff),
            is_retryable=is_transient_error,
            retry_after=self._rate_limit_wait,
            max_rate_limit_waits=max_rate_limit_waits,
            name="fetch_ohlcv",
            sleep=sleep,
        )

    @classmethod
    def from_config(cls, config: BotConfig, exchange: Any = None) -> "ExchangeClient":
        handler = RateLimitHandler(
            min_interval=config.rate_limit.min_interval_seconds,
            remaining_threshold=config.rate_limit.remaining_threshold,
            default_reset_seconds=config.rate_limit.default_reset_seconds,
        )
        return cls(
            exchange if exchange is not None else create_exchange(config),
            handler=handler,
            quote_currency=config.exchange.quote_currency,
            symbol_pattern=config.exchange.leveraged_symbol_pattern,
            market_load_attempts=config.exchange.market_load_attempts,
            market_load_backoff=config.exchange.market_load_backoff_seconds,
            fetch_attempts=config.exchange.fetch_attempts,
            fetch_backoff=config.exchange.fetch_backoff_seconds,
            max_rate_limit_waits=config.rate_limit.max_rate_limit_waits,
        )

    def _rate_limit_wait(self, exc: Exception) -> Optional[float]:
        if is_rate_limit_error(exc):
            return self.handler.reset_delay()
        return None

    def ping(self) -> float:
        """Check connectivity; returns the round trip in milliseconds."""
        start = time.monotonic()
        try:
            self.exchange.fetch_time()
        except ccxt.BaseError as e:
            logger.error("Error connecting to %s: %s", self.exchange.id, e)
            raise
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info("Connected to %s (%.0fms)", self.exchange.id, latency_ms)
        return latency_ms

    def _is_leveraged(self, symbol: str, market: Dict[str, Any]) -> bool:
        flag = market.get("leveraged")
        if isinstance(flag, bool):
            return flag
        info = market.get("info") or {}
        if isinstance(info, dict):
            for key in ("leveraged", "isLeveraged"):
                parsed = _info_flag(info.get(key))
                if parsed is not None:
                    return parsed

        if not self._degraded_logged:
            logger.warning("Exchange metadata has no leveraged flag; matching symbols by name")
            self._degraded_logged = True
        return bool(self.symbol_pattern.search(symbol))

    def list_leveraged_symbols(self) -> Set[str]:
        """
        Active leveraged tokens quoted in USDT.

        Raises:
            MarketLoadError: Markets could not be loaded after every attempt
        """
        try:
            markets = self.market_policy.call(self.exchange.load_markets, True)
        except RetryError as e:
            raise MarketLoadError(str(e)) from e
        except ccxt.BaseError as e:
            raise MarketLoadError(f"Error loading markets: {e}") from e

        symbols = {
            symbol
            for symbol, market in (markets or {}).items()
            if market.get("active", True) is not False
            and market.get("quote") == self.quote_currency
            and self._is_leveraged(symbol, market)
        }
        logger.info("Leveraged tokens found: %d", len(symbols))
        return symbols

    def fetch_candles(self, symbol: str, timeframe: str = "15m", count: int = 100) -> List[Candle]:
        """
        Fetch the most recent candles, oldest first.

        Raises:
            InsufficientDataError: The exchange returned fewer than 21 candles
            FetchError: The request failed after every attempt
        """
        try:
            rows = self.fetch_policy.call(
                self.exchange.fetch_ohlcv, symbol, timeframe, None, count
            )
        except RetryError as e:
            raise FetchError(f"Error fetching OHLCV for {symbol}: {e.last_error}") from e
        except ccxt.BaseError as e:
            raise FetchError(f"Error fetching OHLCV for {symbol}: {e}") from e

        try:
            candles = [Candle.from_row(row) for row in rows or []]
        except (TypeError, ValueError) as e:
            raise FetchError(f"Malformed OHLCV row for {symbol}: {e}") from e

        if len(candles) < CLOSE_WINDOW:
            raise InsufficientDataError(
                f"Not enough data for {symbol}: {len(candles)} candles"
            )
        return candles
