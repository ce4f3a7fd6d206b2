"""
Unit tests for the Telegram notifier and dispatcher (notifier.py).

Tests delivery retries, rate-limit waits, the chat-not-found short circuit
and multi-channel dispatch. Uses mocking for Telegram API calls.

Run tests:
    python3 -m pytest tests/test_notifier.py -v
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest  # type: ignore[import-not-found]
import requests

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from notifier import DeliveryResult, DispatchResult, NotificationDispatcher, TelegramNotifier

TOKEN = "123456:ABCdefGHIjklMNOpqrSTUvwxYZ"
CHAT_ID = "-1001234567890"


def make_response(status: int = 200, body: Optional[Dict[str, Any]] = None,
                  headers: Optional[Dict[str, str]] = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    payload = body if body is not None else {"ok": True, "result": {"message_id": 1}}
    response.json.return_value = payload
    response.text = json.dumps(payload)
    response.headers = headers or {}
    return response


def server_error() -> MagicMock:
    return make_response(500, {"ok": False, "description": "Internal Server Error"})


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def notifier(sleeps: List[float]) -> TelegramNotifier:
    return TelegramNotifier(bot_token=TOKEN, chat_id=CHAT_ID, sleep=sleeps.append)


class TestTelegramNotifierInit:
    """Test TelegramNotifier initialization."""

    def test_missing_token_raises(self) -> None:
        """Test that a missing token is rejected."""
        with pytest.raises(ValueError):
            TelegramNotifier(bot_token="", chat_id=CHAT_ID)

    def test_missing_chat_raises(self) -> None:
        """Test that a missing chat id is rejected."""
        with pytest.raises(ValueError):
            TelegramNotifier(bot_token=TOKEN, chat_id="")

    def test_base_url(self, notifier: TelegramNotifier) -> None:
        """Test the API base URL includes the token."""
        assert notifier.base_url == f"https://api.telegram.org/bot{TOKEN}"


class TestSendMessage:
    """Test delivery and retries."""

    def test_success_first_attempt(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test a successful send posts the message with a footer."""
        with patch("notifier.requests.post", return_value=make_response()) as mock_post:
            result = notifier.send_message("hello")

        assert result == DeliveryResult(True, "primary", 1, None)
        assert sleeps == []
        payload = mock_post.call_args.kwargs["json"]
        assert payload["chat_id"] == CHAT_ID
        assert payload["parse_mode"] == "HTML"
        assert payload["text"].startswith("hello")
        assert "Bot time:" in payload["text"]
        assert mock_post.call_args.kwargs["timeout"] == 8.0

    def test_fails_twice_then_succeeds(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test two failures followed by success report overall success."""
        responses = [server_error(), server_error(), make_response()]
        with patch("notifier.requests.post", side_effect=responses) as mock_post:
            result = notifier.send_message("alert")

        assert result.success
        assert result.attempts == 3
        assert mock_post.call_count == 3
        assert sleeps == [5.0, 5.0]

    def test_gives_up_after_three_attempts(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test exhaustion returns a failed result instead of raising."""
        with patch("notifier.requests.post", side_effect=[server_error() for _ in range(3)]) as mock_post:
            result = notifier.send_message("alert")

        assert not result.success
        assert result.attempts == 3
        assert "500" in (result.error or "")
        assert mock_post.call_count == 3

    def test_network_error_is_retried(self, notifier: TelegramNotifier) -> None:
        """Test connection errors are retried."""
        side_effect = [requests.exceptions.ConnectionError("down"), make_response()]
        with patch("notifier.requests.post", side_effect=side_effect):
            result = notifier.send_message("alert")

        assert result.success
        assert result.attempts == 2

    def test_unconfirmed_delivery_is_retried(self, notifier: TelegramNotifier) -> None:
        """Test a 200 without ok=true counts as a failure."""
        side_effect = [make_response(200, {"ok": False}), make_response()]
        with patch("notifier.requests.post", side_effect=side_effect):
            assert notifier.send_message("alert").success

    def test_rate_limit_waits_retry_after(self, sleeps: List[float]) -> None:
        """Test a 429 waits the provider hint and does not use an attempt."""
        notifier = TelegramNotifier(bot_token=TOKEN, chat_id=CHAT_ID, max_attempts=1, sleep=sleeps.append)
        throttled = make_response(429, {"ok": False, "parameters": {"retry_after": 7}})
        with patch("notifier.requests.post", side_effect=[throttled, make_response()]):
            result = notifier.send_message("alert")

        assert result.success
        assert sleeps == [7.0]

    def test_rate_limit_header_hint(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test the Retry-After header is used when the body has no hint."""
        throttled = make_response(429, {"ok": False}, headers={"Retry-After": "3"})
        with patch("notifier.requests.post", side_effect=[throttled, make_response()]):
            assert notifier.send_message("alert").success
        assert sleeps == [3.0]

    def test_rate_limit_fallback(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test a 429 without any hint waits the fallback."""
        throttled = make_response(429, {"ok": False})
        with patch("notifier.requests.post", side_effect=[throttled, make_response()]):
            assert notifier.send_message("alert").success
        assert sleeps == [10.0]

    def test_chat_not_found_fails_immediately(self, notifier: TelegramNotifier, sleeps: List[float]) -> None:
        """Test a wrong chat id is not retried."""
        response = make_response(400, {"ok": False, "description": "Bad Request: chat not found"})
        with patch("notifier.requests.post", return_value=response) as mock_post:
            result = notifier.send_message("alert")

        assert not result.success
        assert "not found" in (result.error or "")
        assert mock_post.call_count == 1
        assert sleeps == []


class TestCheckBot:
    """Test the getMe probe."""

    def test_active_bot(self, notifier: TelegramNotifier) -> None:
        """Test an ok getMe response."""
        response = MagicMock()
        response.json.return_value = {"ok": True, "result": {"username": "rsi_bot"}}
        with patch("notifier.requests.get", return_value=response) as mock_get:
            assert notifier.check_bot()
        assert mock_get.call_args.args[0].endswith("/getMe")

    def test_unreachable_bot(self, notifier: TelegramNotifier) -> None:
        """Test a network failure reports the bot as inactive."""
        with patch("notifier.requests.get", side_effect=requests.exceptions.Timeout("slow")):
            assert not notifier.check_bot()


class TestNotificationDispatcher:
    """Test multi-channel dispatch."""

    @staticmethod
    def channel(name: str, success: bool) -> MagicMock:
        mock = MagicMock()
        mock.send_message.return_value = DeliveryResult(success, name, 1, None if success else "down")
        return mock

    def test_success_if_any_channel_accepts(self) -> None:
        """Test one accepting channel is enough."""
        primary = self.channel("primary", False)
        secondary = self.channel("secondary", True)
        dispatcher = NotificationDispatcher([primary, secondary])
        try:
            result = dispatcher.send("alert")
        finally:
            dispatcher.close()

        assert result.success
        assert result.error is None
        primary.send_message.assert_called_once_with("alert")
        secondary.send_message.assert_called_once_with("alert")

    def test_all_channels_failing(self) -> None:
        """Test failure is reported with each channel's error."""
        dispatcher = NotificationDispatcher([self.channel("primary", False)])
        result = dispatcher.send("alert")

        assert not result.success
        assert result.error == "primary: down"

    def test_no_channels(self) -> None:
        """Test an empty dispatcher reports failure."""
        result = NotificationDispatcher([]).send("alert")
        assert not result.success
        assert result.error == "no channels configured"

    def test_send_test_message(self) -> None:
        """Test the diagnostic message reaches the channels."""
        primary = self.channel("primary", True)
        result = NotificationDispatcher([primary]).send_test_message()

        assert result.success
        assert "TEST ALERT" in primary.send_message.call_args.args[0]

    def test_dispatch_result_dict(self) -> None:
        """Test the JSON form used by the status surface."""
        data = DispatchResult([DeliveryResult(True, "primary", 2)]).as_dict()
        assert data["success"] is True
        assert data["channels"][0]["attempts"] == 2
        assert "time" in data
