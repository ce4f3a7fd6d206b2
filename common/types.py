#!/usr/bin/env python3
"""
Common type definitions for the leveraged-token RSI bot.

Provides the candle tuple, the indicator snapshot and the enums shared by
the calculator, the alert state tracker, the message templates and the
status surface.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Sequence


# ============================================================================
# Enums
# ============================================================================

class AlertState(Enum):
    """RSI classification of a symbol."""
    NEUTRAL = "NEUTRAL"
    OVERBOUGHT = "OVERBOUGHT"
    OVERSOLD = "OVERSOLD"

    @property
    def is_extreme(self) -> bool:
        return self is not AlertState.NEUTRAL


class AlertPolicy(Enum):
    """Re-alert policy for a symbol that stays in an extreme state."""
    COOLDOWN = "cooldown"  # re-alert once the cooldown has elapsed
    EDGE = "edge"          # alert only when entering an extreme state


# ============================================================================
# Market data
# ============================================================================

def _to_float(value: Any) -> float:
    return float(value) if value is not None else float("nan")


class Candle(NamedTuple):
    """
    One OHLCV bucket as returned by ccxt ``fetch_ohlcv``.

    Attributes:
        timestamp: Bucket open time in epoch milliseconds
        open: Open price
        high: High price
        low: Low price
        close: Close price
        volume: Base volume traded in the bucket
    """
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "Candle":
        """Build a candle from a raw ``[ts, o, h, l, c, v]`` row.

        Missing numeric fields become NaN so malformed rows are rejected by
        the indicator calculator instead of here.
        """
        if len(row) < 6:
            raise ValueError(f"OHLCV row has {len(row)} fields, expected 6")
        return cls(
            int(row[0]),
            _to_float(row[1]),
            _to_float(row[2]),
            _to_float(row[3]),
            _to_float(row[4]),
            _to_float(row[5]),
        )


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Latest value of each indicator for one evaluation."""
    last_close: float
    change_percent: float
    ema9: float
    ema21: float
    rsi: float
    volume_avg: float

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


def parse_alert_policy(value: Optional[str]) -> AlertPolicy:
    """Parse a policy name, defaulting to the cooldown policy."""
    if not value:
        return AlertPolicy.COOLDOWN
    try:
        return AlertPolicy(value.strip().lower())
    except ValueError:
        raise ValueError(
            f"Unknown alert policy '{value}' (expected one of: "
            f"{', '.join(p.value for p in AlertPolicy)})"
        ) from None
