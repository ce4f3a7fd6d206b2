"""Momentum indicators over a candle window: EMA, SMA, Wilder RSI and % change."""

import logging
from typing import Sequence

import numpy as np

from common.types import Candle, IndicatorSnapshot

logger = logging.getLogger(__name__)

CLOSE_WINDOW = 21
VOLUME_WINDOW = 20
EMA_FAST = 9
EMA_SLOW = 21
RSI_PERIOD = 14


class InsufficientDataError(Exception):
    """Fewer candles than the indicator window needs."""


class ComputationError(Exception):
    """An indicator produced no usable value (malformed input)."""


def calculate_ema(values: Sequence[float], period: int) -> np.ndarray:
    """
    Exponential moving average seeded with the SMA of the first ``period`` values.

    Returns ``len(values) - period + 1`` points, or an empty array when the
    input is shorter than ``period``.
    """
    data = np.asarray(values, dtype=float)
    if period < 1 or len(data) < period:
        return np.array([], dtype=float)

    multiplier = 2.0 / (period + 1)
    ema = np.empty(len(data) - period + 1, dtype=float)
    ema[0] = data[:period].mean()
    for i, price in enumerate(data[period:], start=1):
        ema[i] = (price - ema[i - 1]) * multiplier + ema[i - 1]
    return ema


def calculate_sma(values: Sequence[float], period: int) -> np.ndarray:
    """Rolling mean; same length rule as :func:`calculate_ema`."""
    data = np.asarray(values, dtype=float)
    if period < 1 or len(data) < period:
        return np.array([], dtype=float)
    return np.convolve(data, np.ones(period) / period, mode="valid")


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(values: Sequence[float], period: int = RSI_PERIOD) -> np.ndarray:
    """
    Relative Strength Index with Wilder smoothing.

    The first point averages the first ``period`` gains and losses; each
    later point smooths with ``(avg * (period - 1) + x) / period``. A series
    with no losses reads 100, a flat series reads 50 (``technicalindicators``
    RSI reads any zero-loss window, flat included, as 100).

    Returns ``len(values) - period`` points.
    """
    data = np.asarray(values, dtype=float)
    if period < 1 or len(data) <= period:
        return np.array([], dtype=float)

    deltas = np.diff(data)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    rsi = [_rsi_from_averages(avg_gain, avg_loss)]

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        rsi.append(_rsi_from_averages(avg_gain, avg_loss))

    return np.array(rsi, dtype=float)


def _latest(name: str, series: np.ndarray) -> float:
    if series.size == 0:
        raise ComputationError(f"{name} produced no output")
    value = float(series[-1])
    if not np.isfinite(value):
        raise ComputationError(f"{name} is not finite ({value})")
    return value


def calculate_indicators(candles: Sequence[Candle]) -> IndicatorSnapshot:
    """
    Compute the indicator snapshot for the most recent candle.

    Only the last 21 closes and the last 20 volumes are used.

    Raises:
        InsufficientDataError: Fewer than 21 closes or 20 volumes
        ComputationError: An indicator is empty or not finite, or the
                          previous close is zero
    """
    if len(candles) < CLOSE_WINDOW:
        raise InsufficientDataError(
            f"Need at least {CLOSE_WINDOW} candles, got {len(candles)}"
        )

    closes = np.array([c.close for c in candles[-CLOSE_WINDOW:]], dtype=float)
    volumes = np.array([c.volume for c in candles[-VOLUME_WINDOW:]], dtype=float)
    if len(closes) < CLOSE_WINDOW or len(volumes) < VOLUME_WINDOW:
        raise InsufficientDataError("Candle window too short after windowing")

    ema9 = _latest("EMA-9", calculate_ema(closes, EMA_FAST))
    ema21 = _latest("EMA-21", calculate_ema(closes, EMA_SLOW))
    rsi = _latest("RSI-14", calculate_rsi(closes, RSI_PERIOD))
    volume_avg = _latest("SMA-20 volume", calculate_sma(volumes, VOLUME_WINDOW))

    last_close = float(closes[-1])
    previous_close = float(closes[-2])
    if previous_close == 0:
        raise ComputationError("Previous close is zero; change percent is undefined")
    if not (np.isfinite(last_close) and np.isfinite(previous_close)):
        raise ComputationError("Close price is not finite")
    change_percent = (last_close - previous_close) / previous_close * 100.0

    return IndicatorSnapshot(
        last_close=last_close,
        change_percent=change_percent,
        ema9=ema9,
        ema21=ema21,
        rsi=rsi,
        volume_avg=volume_avg,
    )
