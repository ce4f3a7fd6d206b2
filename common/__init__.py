"""
Common utilities package for the leveraged-token RSI bot.

This package provides shared functionality including:
- Logging configuration with the bounded JSON event log
- Resilience patterns (retry policy, backoff, error classification)
- Type definitions and data models
"""

__version__ = "1.0.0"
__all__ = ["logging_config", "resilience", "types"]
