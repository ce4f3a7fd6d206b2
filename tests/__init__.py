"""
Unit tests for the leveraged token RSI alert bot.

Run all tests:
    python3 -m pytest tests/ -v

Run with coverage:
    python3 -m pytest tests/ --cov=. --cov-report=html --cov-report=term

Run specific test file:
    python3 -m pytest tests/test_alert_state.py -v
"""

__version__ = "1.0.0"
