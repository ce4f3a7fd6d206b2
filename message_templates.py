"""
Centralized Message Templates for the RSI alert bot
===================================================
This module provides the Telegram message formatting for RSI alerts and the
diagnostic test message. Edit the templates here to change every alert.

Usage:
    from message_templates import format_rsi_alert

    message = format_rsi_alert("BTC3L/USDT", AlertState.OVERBOUGHT, snapshot)
    dispatcher.send(message)
"""

import html
from datetime import datetime, timezone
from typing import Optional

from common.types import AlertState, IndicatorSnapshot


# =============================================================================
# CONFIGURATION - Edit these to customize all alerts
# =============================================================================

STATE_LABELS = {
    AlertState.OVERBOUGHT: "OVERBOUGHT 🔴",
    AlertState.OVERSOLD: "OVERSOLD 🟢",
}

STATE_EMOJIS = {
    AlertState.OVERBOUGHT: "📉",
    AlertState.OVERSOLD: "📈",
}

RECOMMENDATIONS = {
    AlertState.OVERBOUGHT: "sell",
    AlertState.OVERSOLD: "buy",
}

DEFAULT_TIMEFRAME = "15m"
QUOTE_CURRENCY = "USDT"


def recommendation_for(state: AlertState) -> str:
    """Return the recommendation for an extreme state ("sell" or "buy")."""
    try:
        return RECOMMENDATIONS[state]
    except KeyError:
        raise ValueError(f"No recommendation for state {state.value}") from None


def _fmt_price(value: float) -> str:
    """Leveraged tokens trade at very different magnitudes."""
    if value >= 1:
        return f"{value:.4f}"
    return f"{value:.8f}".rstrip("0").rstrip(".")


# =============================================================================
# ALERT MESSAGE TEMPLATE
# =============================================================================

def format_rsi_alert(
    symbol: str,
    state: AlertState,
    snapshot: IndicatorSnapshot,
    timeframe: str = DEFAULT_TIMEFRAME,
) -> str:
    """
    Format an RSI threshold alert.

    Args:
        symbol: Market symbol, e.g. "BTC3L/USDT"
        state: OVERBOUGHT or OVERSOLD
        snapshot: Indicator values for this evaluation
        timeframe: Candle timeframe shown in the change line

    Returns:
        HTML formatted message
    """
    recommendation = recommendation_for(state)
    lines = [
        f"{STATE_EMOJIS[state]} <b>{html.escape(symbol)}</b> | {STATE_LABELS[state]}",
        f"💰 Price: {_fmt_price(snapshot.last_close)} {QUOTE_CURRENCY}",
        f"📊 RSI: {snapshot.rsi:.2f}",
        f"📶 EMA9/21: {_fmt_price(snapshot.ema9)} | {_fmt_price(snapshot.ema21)}",
        f"🔄 Change {timeframe}: {snapshot.change_percent:+.2f}%",
        f"📦 Avg volume (20): {snapshot.volume_avg:,.2f}",
        "",
        f"Consider <b>{recommendation.upper()}</b>",
    ]
    return "\n".join(lines)


def format_test_message(server_time: Optional[datetime] = None) -> str:
    """Message sent at startup, after a restart and from /test-alerts."""
    now = server_time or datetime.now(timezone.utc)
    return (
        "🧪 <b>TEST ALERT</b> 🧪\n"
        "This is a test message to verify the notification setup.\n"
        f"Server time: {now.isoformat()}"
    )
