"""
Unit tests for process statistics (health_monitor.py).

Run tests:
    python3 -m pytest tests/test_health_monitor.py -v
"""

import sys
import threading
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from health_monitor import BotStats


class TestBotStats:
    """Test BotStats counters."""

    def test_initial_snapshot(self) -> None:
        """Test a fresh instance reports zeros."""
        snapshot = BotStats().snapshot()

        assert snapshot["cycles_completed"] == 0
        assert snapshot["total_alerts_triggered"] == 0
        assert snapshot["total_alerts_sent"] == 0
        assert snapshot["failed_alerts"] == 0
        assert snapshot["last_successful_alert"] is None
        assert snapshot["error_count"] == 0
        assert snapshot["uptime_minutes"] == 0

    def test_alert_counters(self) -> None:
        """Test triggered, sent and failed alerts are counted separately."""
        stats = BotStats()
        stats.record_alert_triggered()
        stats.record_alert_triggered()
        stats.record_alert_sent()
        stats.record_alert_failed()

        snapshot = stats.snapshot()
        assert snapshot["total_alerts_triggered"] == 2
        assert snapshot["total_alerts_sent"] == 1
        assert snapshot["failed_alerts"] == 1
        assert snapshot["last_successful_alert"] is not None

    def test_record_cycle_returns_count(self) -> None:
        """Test cycle numbering."""
        stats = BotStats()
        assert stats.record_cycle() == 1
        assert stats.record_cycle() == 2

    def test_error_ring_buffer(self) -> None:
        """Test only the most recent errors are kept."""
        stats = BotStats(max_error_history=3)
        for i in range(5):
            stats.record_error(f"error {i}", symbol=f"T{i}L/USDT")

        errors = stats.recent_errors()
        assert [e["message"] for e in errors] == ["error 2", "error 3", "error 4"]
        assert errors[-1]["symbol"] == "T4L/USDT"
        assert [e["message"] for e in stats.recent_errors(limit=1)] == ["error 4"]

    def test_reset(self) -> None:
        """Test reset clears counters and errors."""
        stats = BotStats()
        stats.record_cycle()
        stats.record_alert_sent()
        stats.record_error("boom")

        stats.reset()

        snapshot = stats.snapshot()
        assert snapshot["cycles_completed"] == 0
        assert snapshot["total_alerts_sent"] == 0
        assert snapshot["error_count"] == 0
        assert snapshot["last_successful_alert"] is None

    def test_concurrent_updates(self) -> None:
        """Test counters are consistent under concurrent workers."""
        stats = BotStats()

        def work() -> None:
            for _ in range(500):
                stats.record_alert_triggered()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert stats.total_alerts_triggered == 2000
