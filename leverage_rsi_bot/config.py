#!/usr/bin/env python3
"""Configuration module for the Leverage RSI Bot with environment variable management."""

import os
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from common.types import AlertPolicy, parse_alert_policy

logger = logging.getLogger("leverage_rsi.config")

ENV_PREFIX = "LEVERAGE_BOT_"


@dataclass
class ExchangeConfig:
    """Exchange and market data parameters."""
    exchange_id: str = "kucoin"
    timeframe: str = "15m"
    candle_limit: int = 100
    request_timeout_seconds: int = 10
    quote_currency: str = "USDT"
    leveraged_symbol_pattern: str = r"[0-9]+[LS]/USDT$"
    market_load_attempts: int = 5
    market_load_backoff_seconds: float = 10.0
    fetch_attempts: int = 3
    fetch_backoff_seconds: float = 5.0


@dataclass
class RateLimitingConfig:
    """Request pacing against the exchange quota."""
    min_interval_seconds: float = 1.0
    remaining_threshold: int = 10
    default_reset_seconds: float = 30.0
    max_rate_limit_waits: int = 3


@dataclass
class AlertConfig:
    """RSI thresholds and re-alert policy."""
    overbought: float = 70.0
    oversold: float = 30.0
    cooldown_minutes: float = 15.0
    policy: AlertPolicy = AlertPolicy.COOLDOWN

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_minutes * 60.0


@dataclass
class NotificationConfig:
    """Telegram delivery parameters."""
    max_attempts: int = 3
    retry_delay_seconds: float = 5.0
    rate_limit_fallback_seconds: float = 10.0
    max_rate_limit_waits: int = 3
    request_timeout_seconds: float = 8.0


@dataclass
class ExecutionConfig:
    """Bot execution parameters."""
    cycle_interval_seconds: int = 300
    batch_size: int = 3
    batch_delay_seconds: float = 10.0
    error_cooldown_seconds: float = 60.0
    send_test_message_on_start: bool = True
    server_host: str = "0.0.0.0"
    server_port: int = 3000
    enable_detailed_logging: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    event_log_file: str = "logs/event_log.json"
    event_log_max_entries: int = 100


@dataclass
class ExchangeCredentials:
    """Exchange API credentials."""
    api_key: Optional[str] = None
    secret: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.secret)


@dataclass
class TelegramConfig:
    """Telegram notification configuration for one channel."""
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    name: str = "primary"

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def validate(self) -> Tuple[bool, Optional[str]]:
        """Validate Telegram configuration."""
        if not self.bot_token:
            return False, "TELEGRAM_BOT_TOKEN is missing"
        if not self.chat_id:
            return False, "TELEGRAM_CHAT_ID is missing"
        # Basic format validation
        if not self.bot_token.count(':') >= 1:
            return False, "Invalid Telegram bot token format"
        if not (self.chat_id.startswith('-') or self.chat_id.lstrip('-').isdigit()):
            return False, "Invalid Telegram chat ID format"
        return True, None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class BotConfig:
    """Centralized configuration for the Leverage RSI Bot."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file
        self.exchange = ExchangeConfig()
        self.rate_limit = RateLimitingConfig()
        self.alerts = AlertConfig()
        self.notifications = NotificationConfig()
        self.execution = ExecutionConfig()

        # Load from environment first
        self._load_from_env()

        # Override with config file if provided
        if config_file and config_file.exists():
            self._load_from_file(config_file)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        p = ENV_PREFIX

        # Exchange
        self.exchange.exchange_id = os.getenv(f'{p}EXCHANGE', self.exchange.exchange_id)
        self.exchange.timeframe = os.getenv(f'{p}TIMEFRAME', self.exchange.timeframe)
        self.exchange.candle_limit = int(os.getenv(f'{p}CANDLE_LIMIT', self.exchange.candle_limit))
        self.exchange.request_timeout_seconds = int(os.getenv(f'{p}REQUEST_TIMEOUT', self.exchange.request_timeout_seconds))
        self.exchange.market_load_attempts = int(os.getenv(f'{p}MARKET_LOAD_ATTEMPTS', self.exchange.market_load_attempts))
        self.exchange.fetch_attempts = int(os.getenv(f'{p}FETCH_ATTEMPTS', self.exchange.fetch_attempts))

        # Rate Limiting
        self.rate_limit.min_interval_seconds = float(os.getenv(f'{p}MIN_REQUEST_INTERVAL', self.rate_limit.min_interval_seconds))
        self.rate_limit.remaining_threshold = int(os.getenv(f'{p}QUOTA_THRESHOLD', self.rate_limit.remaining_threshold))

        # Alerts
        self.alerts.overbought = float(os.getenv(f'{p}RSI_OVERBOUGHT', self.alerts.overbought))
        self.alerts.oversold = float(os.getenv(f'{p}RSI_OVERSOLD', self.alerts.oversold))
        self.alerts.cooldown_minutes = float(os.getenv(f'{p}COOLDOWN_MINUTES', self.alerts.cooldown_minutes))
        policy = os.getenv(f'{p}ALERT_POLICY')
        if policy:
            self.alerts.policy = parse_alert_policy(policy)

        # Notifications
        self.notifications.max_attempts = int(os.getenv(f'{p}TELEGRAM_MAX_ATTEMPTS', self.notifications.max_attempts))
        self.notifications.retry_delay_seconds = float(os.getenv(f'{p}TELEGRAM_RETRY_DELAY', self.notifications.retry_delay_seconds))

        # Execution
        self.execution.cycle_interval_seconds = int(os.getenv(f'{p}CYCLE_INTERVAL', self.execution.cycle_interval_seconds))
        self.execution.batch_size = int(os.getenv(f'{p}BATCH_SIZE', self.execution.batch_size))
        self.execution.batch_delay_seconds = float(os.getenv(f'{p}BATCH_DELAY', self.execution.batch_delay_seconds))
        self.execution.send_test_message_on_start = _env_bool(f'{p}STARTUP_TEST_MESSAGE', self.execution.send_test_message_on_start)
        self.execution.log_level = os.getenv(f'{p}LOG_LEVEL', self.execution.log_level)
        self.execution.log_dir = os.getenv(f'{p}LOG_DIR', self.execution.log_dir)
        self.execution.event_log_file = os.getenv(f'{p}EVENT_LOG_FILE', self.execution.event_log_file)
        self.execution.server_port = int(os.getenv('PORT', self.execution.server_port))

    def _load_from_file(self, config_file: Path) -> None:
        """Load configuration from JSON file."""
        try:
            with open(config_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load config file %s: %s", config_file, e)
            return

        bot_config = data.get('leverage_rsi_bot', {})
        sections = {
            'exchange': self.exchange,
            'rate_limiting': self.rate_limit,
            'alerts': self.alerts,
            'notifications': self.notifications,
            'execution': self.execution,
        }
        for section_name, section in sections.items():
            for key, value in bot_config.get(section_name, {}).items():
                if not hasattr(section, key):
                    logger.warning("Unknown config key %s.%s ignored", section_name, key)
                    continue
                if section is self.alerts and key == 'policy':
                    value = parse_alert_policy(value)
                setattr(section, key, value)

        logger.info("Loaded configuration from %s", config_file)

    def get_exchange_credentials(self, exchange: Optional[str] = None) -> ExchangeCredentials:
        """Get API credentials for exchange. Public market data works without them."""
        exchange_upper = (exchange or self.exchange.exchange_id).upper()
        return ExchangeCredentials(
            api_key=os.getenv(f'{exchange_upper}_API_KEY'),
            secret=os.getenv(f'{exchange_upper}_SECRET'),
            password=os.getenv(f'{exchange_upper}_PASSWORD'),
        )

    def get_telegram_channels(self) -> List[TelegramConfig]:
        """Primary channel plus the optional secondary one."""
        channels = [
            TelegramConfig(
                bot_token=os.getenv('TELEGRAM_BOT_TOKEN'),
                chat_id=os.getenv('TELEGRAM_CHAT_ID'),
                name="primary",
            )
        ]
        secondary = TelegramConfig(
            bot_token=os.getenv('TELEGRAM_SECONDARY_BOT_TOKEN'),
            chat_id=os.getenv('TELEGRAM_SECONDARY_CHAT_ID'),
            name="secondary",
        )
        if secondary.bot_token or secondary.chat_id:
            channels.append(secondary)
        return channels

    def validate_environment(self) -> Tuple[bool, List[str]]:
        """Validate all required environment variables are set."""
        errors: List[str] = []

        for channel in self.get_telegram_channels():
            is_valid, error = channel.validate()
            if not is_valid and error:
                errors.append(f"Telegram ({channel.name}): {error}")

        if not 0 < self.alerts.oversold < self.alerts.overbought < 100:
            errors.append(
                f"RSI thresholds must satisfy 0 < oversold < overbought < 100 "
                f"(got {self.alerts.oversold}/{self.alerts.overbought})"
            )
        if self.execution.batch_size < 1:
            errors.append("batch_size must be at least 1")

        return len(errors) == 0, errors

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary."""
        alerts = asdict(self.alerts)
        alerts['policy'] = self.alerts.policy.value
        return {
            'exchange': asdict(self.exchange),
            'rate_limiting': asdict(self.rate_limit),
            'alerts': alerts,
            'notifications': asdict(self.notifications),
            'execution': asdict(self.execution),
        }


def load_config(config_file: Optional[Path] = None) -> BotConfig:
    """Load configuration from environment and optional file."""
    return BotConfig(config_file=config_file)
