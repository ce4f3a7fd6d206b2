import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from common.resilience import RetryError, RetryPolicy, constant_backoff
from message_templates import format_test_message

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramError(Exception):
    """Telegram did not accept a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TelegramRateLimited(TelegramError):
    """HTTP 429 from Telegram, carrying the provider retry interval."""

    def __init__(self, message: str, retry_after: float):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ChatNotFoundError(TelegramError):
    """The configured chat id does not exist; retrying cannot help."""


@dataclass
class DeliveryResult:
    success: bool
    channel: str
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class DispatchResult:
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(r.success for r in self.results)

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None
        errors = [f"{r.channel}: {r.error}" for r in self.results if r.error]
        return "; ".join(errors) or "no channels configured"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "channels": [r.__dict__ for r in self.results],
            "time": datetime.now(timezone.utc).isoformat(),
        }


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        name: str = "primary",
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        rate_limit_fallback: float = 10.0,
        max_rate_limit_waits: int = 3,
        timeout: float = 8.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if not bot_token or not chat_id:
            logger.error("Telegram bot token or chat ID not configured")
            raise ValueError("Telegram credentials not configured")

        self.bot_token = bot_token
        self.chat_id = chat_id
        self.name = name
        self.base_url = f"{TELEGRAM_API_BASE}/bot{bot_token}"
        self.timeout = timeout
        self.rate_limit_fallback = rate_limit_fallback

        policy_kwargs: Dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        self.policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff=constant_backoff(retry_delay),
            is_retryable=lambda e: not isinstance(e, ChatNotFoundError),
            retry_after=lambda e: e.retry_after if isinstance(e, TelegramRateLimited) else None,
            max_rate_limit_waits=max_rate_limit_waits,
            name=f"telegram[{name}]",
            **policy_kwargs,
        )

        logger.info("Telegram notifier '%s' initialized", name)

    def _retry_after(self, response: requests.Response, body: Dict[str, Any]) -> float:
        params = body.get("parameters") if isinstance(body, dict) else None
        if isinstance(params, dict) and params.get("retry_after") is not None:
            try:
                return float(params["retry_after"])
            except (TypeError, ValueError):
                pass
        header = response.headers.get("Retry-After") if response.headers else None
        if header is not None:
            try:
                return float(header)
            except (TypeError, ValueError):
                pass
        return self.rate_limit_fallback

    def _post(self, text: str, parse_mode: str) -> None:
        response = requests.post(
            f"{self.base_url}/sendMessage",
            json={
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            },
            timeout=self.timeout,
        )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code == 429:
            raise TelegramRateLimited("Telegram rate limit reached", self._retry_after(response, body))

        description = str(body.get("description", "")) if isinstance(body, dict) else ""
        if response.status_code == 400 and "chat not found" in description.lower():
            raise ChatNotFoundError(f"Telegram chat {self.chat_id} not found", status_code=400)

        if response.status_code >= 400:
            raise TelegramError(
                f"Telegram returned HTTP {response.status_code}: {description or response.text[:200]}",
                status_code=response.status_code,
            )

        if not (isinstance(body, dict) and body.get("ok")):
            raise TelegramError(f"Telegram did not confirm delivery: {body}")

    def send_message(self, message: str, parse_mode: str = "HTML") -> DeliveryResult:
        """Deliver a message; never raises."""
        text = f"{message}\n\n<i>Bot time: {datetime.now(timezone.utc).isoformat()}</i>"
        attempts = 0

        def attempt() -> None:
            nonlocal attempts
            attempts += 1
            logger.debug("Telegram[%s] delivery attempt %d", self.name, attempts)
            self._post(text, parse_mode)

        try:
            self.policy.call(attempt)
        except RetryError as e:
            logger.error("Telegram[%s] delivery failed after %d attempts: %s", self.name, attempts, e.last_error)
            return DeliveryResult(False, self.name, attempts, str(e.last_error))
        except ChatNotFoundError as e:
            logger.error("Telegram[%s] chat id is wrong: %s", self.name, e)
            return DeliveryResult(False, self.name, attempts, str(e))
        except (TelegramError, requests.exceptions.RequestException) as e:
            logger.error("Telegram[%s] delivery failed: %s", self.name, e)
            return DeliveryResult(False, self.name, attempts, str(e))

        logger.info("Message sent successfully to Telegram[%s]", self.name)
        return DeliveryResult(True, self.name, attempts)

    def check_bot(self) -> bool:
        """Probe the bot with getMe."""
        try:
            response = requests.get(f"{self.base_url}/getMe", timeout=5)
            response.raise_for_status()
            ok = bool(response.json().get("ok"))
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Telegram bot '%s' does not look active: %s", self.name, e)
            return False
        if not ok:
            logger.error("Telegram bot '%s' getMe did not return ok", self.name)
        return ok


class NotificationDispatcher:
    """Sends each message to every configured channel; one acceptance is enough."""

    def __init__(self, notifiers: Sequence[TelegramNotifier]):
        self.notifiers = list(notifiers)
        self._pool: Optional[ThreadPoolExecutor] = None
        if len(self.notifiers) > 1:
            self._pool = ThreadPoolExecutor(
                max_workers=len(self.notifiers), thread_name_prefix="notify"
            )
        if not self.notifiers:
            logger.warning("No notification channels configured; alerts will not be delivered")

    def send(self, message: str) -> DispatchResult:
        if self._pool is None:
            return DispatchResult([n.send_message(message) for n in self.notifiers])

        futures = [self._pool.submit(n.send_message, message) for n in self.notifiers]
        result = DispatchResult([f.result() for f in futures])
        for r in result.results:
            if not r.success:
                logger.warning("Channel '%s' rejected the alert: %s", r.channel, r.error)
        return result

    def send_test_message(self) -> DispatchResult:
        logger.info("Sending test message...")
        result = self.send(format_test_message())
        if result.success:
            logger.info("Test message delivered")
        else:
            logger.warning("Test message was not delivered: %s", result.error)
        return result

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
