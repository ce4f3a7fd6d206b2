"""Leveraged token RSI alert bot (KuCoin, Telegram)."""

__version__ = "1.0.0"
