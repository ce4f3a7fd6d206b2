"""Process-wide statistics for the bot: cycles, alert counters and recent errors."""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class BotStats:
    """Aggregate counters shared by the loop, the evaluation workers and the status server."""

    def __init__(self, max_error_history: int = 20) -> None:
        """
        Initialize statistics.

        Args:
            max_error_history: Size of the recent errors ring buffer
        """
        self.max_error_history = max_error_history
        self._lock = threading.Lock()
        self.start_time = datetime.now(timezone.utc)
        self.cycles_completed = 0
        self.total_alerts_triggered = 0
        self.total_alerts_sent = 0
        self.failed_alerts = 0
        self.last_successful_alert: Optional[datetime] = None
        self.errors: Deque[Dict[str, Any]] = deque(maxlen=max_error_history)

    def reset(self) -> None:
        """Zero every counter and restart the uptime clock."""
        with self._lock:
            self.start_time = datetime.now(timezone.utc)
            self.cycles_completed = 0
            self.total_alerts_triggered = 0
            self.total_alerts_sent = 0
            self.failed_alerts = 0
            self.last_successful_alert = None
            self.errors.clear()
        logger.info("Bot statistics reset")

    def record_cycle(self) -> int:
        """Record a completed monitoring cycle and return the new count."""
        with self._lock:
            self.cycles_completed += 1
            return self.cycles_completed

    def record_alert_triggered(self) -> None:
        with self._lock:
            self.total_alerts_triggered += 1

    def record_alert_sent(self) -> None:
        with self._lock:
            self.total_alerts_sent += 1
            self.last_successful_alert = datetime.now(timezone.utc)

    def record_alert_failed(self) -> None:
        with self._lock:
            self.failed_alerts += 1

    def record_error(self, message: str, **details: Any) -> None:
        """Record an error occurrence in the ring buffer."""
        entry: Dict[str, Any] = {
            "time": datetime.now(timezone.utc).isoformat(),
            "message": message,
        }
        entry.update(details)
        with self._lock:
            self.errors.append(entry)

    def recent_errors(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            errors = list(self.errors)
        return errors[-limit:] if limit else errors

    def uptime_minutes(self) -> int:
        return int((datetime.now(timezone.utc) - self.start_time).total_seconds() // 60)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the counters for the status endpoint."""
        with self._lock:
            return {
                "start_time": self.start_time.isoformat(),
                "uptime_minutes": int((datetime.now(timezone.utc) - self.start_time).total_seconds() // 60),
                "cycles_completed": self.cycles_completed,
                "total_alerts_triggered": self.total_alerts_triggered,
                "total_alerts_sent": self.total_alerts_sent,
                "failed_alerts": self.failed_alerts,
                "last_successful_alert": (
                    self.last_successful_alert.isoformat() if self.last_successful_alert else None
                ),
                "error_count": len(self.errors),
            }
