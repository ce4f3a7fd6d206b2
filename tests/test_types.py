"""
Unit tests for shared types (common/types.py).

Run tests:
    python3 -m pytest tests/test_types.py -v
"""

import math
import sys
from pathlib import Path

import pytest  # type: ignore[import-not-found]

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from common.types import AlertPolicy, AlertState, Candle, IndicatorSnapshot, parse_alert_policy


class TestCandle:
    """Test OHLCV row conversion."""

    def test_from_row(self) -> None:
        """Test a full row converts to floats."""
        candle = Candle.from_row([1_700_000_000_000, "1.0", 1.2, 0.9, 1.1, 500])
        assert candle.timestamp == 1_700_000_000_000
        assert candle.open == 1.0
        assert candle.close == 1.1
        assert candle.volume == 500.0

    def test_missing_values_become_nan(self) -> None:
        """Test None fields become NaN."""
        candle = Candle.from_row([1, 1.0, 1.0, 1.0, None, None])
        assert math.isnan(candle.close)
        assert math.isnan(candle.volume)

    def test_short_row(self) -> None:
        """Test truncated rows are rejected."""
        with pytest.raises(ValueError):
            Candle.from_row([1, 2, 3])


class TestAlertState:
    """Test state helpers."""

    def test_is_extreme(self) -> None:
        """Test only overbought and oversold are extreme."""
        assert AlertState.OVERBOUGHT.is_extreme
        assert AlertState.OVERSOLD.is_extreme
        assert not AlertState.NEUTRAL.is_extreme


class TestParseAlertPolicy:
    """Test policy parsing."""

    @pytest.mark.parametrize("value, expected", [
        (None, AlertPolicy.COOLDOWN),
        ("", AlertPolicy.COOLDOWN),
        ("cooldown", AlertPolicy.COOLDOWN),
        (" EDGE ", AlertPolicy.EDGE),
    ])
    def test_valid(self, value, expected) -> None:
        """Test accepted names."""
        assert parse_alert_policy(value) is expected

    def test_invalid(self) -> None:
        """Test unknown names raise."""
        with pytest.raises(ValueError, match="Unknown alert policy"):
            parse_alert_policy("always")


def test_snapshot_as_dict() -> None:
    """Test the snapshot exports every indicator."""
    snapshot = IndicatorSnapshot(1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
    assert snapshot.as_dict() == {
        "last_close": 1.0, "change_percent": 2.0, "ema9": 3.0, "ema21": 4.0, "rsi": 5.0, "volume_avg": 6.0,
    }
