#!/usr/bin/env python3
"""HTTP status and control endpoints for the RSI bot.

Routes:
    GET  /                  plain text liveness
    GET  /health            JSON health summary
    GET  /status            statistics, per-symbol states, recent errors
    GET  /logs              the JSON event log
    GET  /debug/rate-limit  exchange pacing counters
    POST /restart           clear state and statistics, start a fresh cycle
    POST /test-alerts       send the test message to every channel
"""

import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, Optional, Type

from file_lock import read_json_log

logger = logging.getLogger(__name__)


def make_handler(bot: Any, dispatcher: Any, event_log_file: Optional[Path] = None) -> Type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to one bot instance."""

    class StatusHandler(BaseHTTPRequestHandler):
        """HTTP handler for the status surface."""

        def _send_json(self, status: int, payload: Any) -> None:
            body = json.dumps(payload, indent=2, default=str).encode()
            self.send_response(status)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _send_text(self, status: int, text: str) -> None:
            body = text.encode()
            self.send_response(status)
            self.send_header('Content-Type', 'text/plain; charset=utf-8')
            self.send_header('Content-Length', str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _not_found(self) -> None:
            self._send_json(404, {"error": "Not found", "path": self.path})

        def do_GET(self) -> None:
            """Handle GET requests."""
            path = self.path.split('?', 1)[0]
            stats = bot.context.stats

            if path == '/':
                status = "active" if bot.is_active() else "inactive"
                now = datetime.now(timezone.utc).isoformat()
                self._send_text(
                    200,
                    f"Leverage RSI bot: {status} ({now}), uptime {stats.uptime_minutes()} min",
                )
            elif path == '/health':
                active = bot.is_active()
                self._send_json(200, {
                    "status": "healthy" if active else "unhealthy",
                    "is_monitoring": active,
                    "uptime_minutes": stats.uptime_minutes(),
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            elif path == '/status':
                self._send_json(200, status_payload(bot))
            elif path == '/logs':
                self._serve_logs()
            elif path == '/debug/rate-limit':
                self._send_json(200, bot.client.handler.get_stats())
            else:
                self._not_found()

        def _serve_logs(self) -> None:
            if event_log_file is None:
                self._send_json(200, [])
                return
            logs = read_json_log(event_log_file)
            if logs is None:
                self._send_json(500, {"error": "Error reading logs", "details": str(event_log_file)})
                return
            self._send_json(200, logs)

        def do_POST(self) -> None:
            """Handle POST requests."""
            path = self.path.split('?', 1)[0]
            length = int(self.headers.get('Content-Length') or 0)
            if length:
                self.rfile.read(length)

            if path == '/restart':
                try:
                    bot.restart()
                except Exception as e:
                    logger.exception("Restart failed")
                    self._send_json(500, {"error": "Error restarting the bot", "details": str(e)})
                    return
                self._send_json(200, {"success": True, "message": "Bot restarting; monitoring resumes with a fresh cycle"})
            elif path == '/test-alerts':
                try:
                    result = dispatcher.send_test_message()
                except Exception as e:
                    logger.exception("Test alert failed")
                    self._send_json(500, {"error": "Error sending test messages", "details": str(e)})
                    return
                self._send_json(200, result.as_dict())
            else:
                self._not_found()

        def log_message(self, format: str, *args: Any) -> None:
            """Route access logs through logging at DEBUG."""
            logger.debug("%s - %s", self.address_string(), format % args)

    return StatusHandler


def status_payload(bot: Any) -> Dict[str, Any]:
    stats = bot.context.stats
    tracker = bot.context.tracker
    payload: Dict[str, Any] = {"is_monitoring": bot.is_active(), "token_count": len(tracker)}
    payload.update(stats.snapshot())
    payload["tokens"] = tracker.summary(limit=20)
    payload["recent_errors"] = stats.recent_errors(limit=5)
    return payload


class StatusServer:
    """Runs the status endpoints in a background thread."""

    def __init__(
        self,
        bot: Any,
        dispatcher: Any,
        host: str = "0.0.0.0",
        port: int = 3000,
        event_log_file: Optional[Path] = None,
    ) -> None:
        self.httpd = ThreadingHTTPServer((host, port), make_handler(bot, dispatcher, event_log_file))
        self.httpd.daemon_threads = True
        self._thread: Optional[threading.Thread] = None

    @property
    def server_port(self) -> int:
        return self.httpd.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(target=self.httpd.serve_forever, name="status-server", daemon=True)
        self._thread.start()
        logger.info("Status server running on port %d", self.server_port)

    def stop(self) -> None:
        logger.info("Shutting down status server...")
        self.httpd.shutdown()
        self.httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
