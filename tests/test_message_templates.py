"""
Unit tests for alert message formatting (message_templates.py).

Run tests:
    python3 -m pytest tests/test_message_templates.py -v
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest  # type: ignore[import-not-found]

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.types import AlertState, IndicatorSnapshot
from message_templates import format_rsi_alert, format_test_message, recommendation_for


@pytest.fixture
def snapshot() -> IndicatorSnapshot:
    return IndicatorSnapshot(
        last_close=0.01234, change_percent=-2.5, ema9=0.0125, ema21=0.0127, rsi=74.2, volume_avg=123456.789,
    )


class TestRecommendation:
    """Test recommendations per state."""

    def test_extreme_states(self) -> None:
        """Test overbought sells and oversold buys."""
        assert recommendation_for(AlertState.OVERBOUGHT) == "sell"
        assert recommendation_for(AlertState.OVERSOLD) == "buy"

    def test_neutral_has_none(self) -> None:
        """Test neutral has no recommendation."""
        with pytest.raises(ValueError):
            recommendation_for(AlertState.NEUTRAL)


class TestFormatRsiAlert:
    """Test the alert message."""

    def test_overbought_message(self, snapshot: IndicatorSnapshot) -> None:
        """Test every indicator is rendered."""
        message = format_rsi_alert("BTC3L/USDT", AlertState.OVERBOUGHT, snapshot)

        assert "<b>BTC3L/USDT</b>" in message
        assert "OVERBOUGHT" in message
        assert "RSI: 74.20" in message
        assert "Price: 0.01234 USDT" in message
        assert "Change 15m: -2.50%" in message
        assert "123,456.79" in message
        assert message.endswith("Consider <b>SELL</b>")

    def test_oversold_message(self, snapshot: IndicatorSnapshot) -> None:
        """Test the oversold recommendation."""
        message = format_rsi_alert("ETH3S/USDT", AlertState.OVERSOLD, snapshot, timeframe="1h")
        assert "OVERSOLD" in message
        assert "Change 1h" in message
        assert message.endswith("Consider <b>BUY</b>")

    def test_large_prices(self, snapshot: IndicatorSnapshot) -> None:
        """Test prices above one use four decimals."""
        big = IndicatorSnapshot(
            last_close=12.5, change_percent=0.0, ema9=12.0, ema21=11.0, rsi=80.0, volume_avg=1.0,
        )
        assert "Price: 12.5000 USDT" in format_rsi_alert("X3L/USDT", AlertState.OVERBOUGHT, big)


class TestFormatTestMessage:
    """Test the diagnostic message."""

    def test_includes_time(self) -> None:
        """Test the server time is shown."""
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        message = format_test_message(now)
        assert "TEST ALERT" in message
        assert now.isoformat() in message
