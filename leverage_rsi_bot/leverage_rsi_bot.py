#!/usr/bin/env python3
"""Leverage RSI bot: watches KuCoin leveraged tokens and alerts on RSI extremes.

Every cycle the bot reloads the leveraged token universe, evaluates the
symbols in small batches (candles -> indicators -> alert state machine ->
Telegram) and sleeps until the next cycle. A thin HTTP surface exposes
status and accepts restart and test-alert commands.
"""

import argparse
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parent

# Add parent directory to path for shared modules
if str(BASE_DIR.parent) not in sys.path:
    sys.path.insert(0, str(BASE_DIR.parent))

from dotenv import load_dotenv  # noqa: E402

from common.logging_config import setup_logging  # noqa: E402
from common.types import parse_alert_policy  # noqa: E402
from health_check import StatusServer  # noqa: E402
from health_monitor import BotStats  # noqa: E402
from message_templates import format_rsi_alert  # noqa: E402
from notifier import NotificationDispatcher, TelegramNotifier  # noqa: E402

from leverage_rsi_bot.alert_state import AlertStateTracker  # noqa: E402
from leverage_rsi_bot.config import BotConfig, load_config  # noqa: E402
from leverage_rsi_bot.exchange_client import ExchangeClient, FetchError, MarketLoadError  # noqa: E402
from leverage_rsi_bot.indicators import (  # noqa: E402
    ComputationError,
    InsufficientDataError,
    calculate_indicators,
)

logger = logging.getLogger("leverage_rsi")


@dataclass
class MonitorContext:
    """State owned by the monitoring loop and handed to each symbol evaluation."""
    stats: BotStats = field(default_factory=BotStats)
    tracker: AlertStateTracker = field(default_factory=AlertStateTracker)

    @classmethod
    def from_config(cls, config: BotConfig) -> "MonitorContext":
        return cls(
            stats=BotStats(),
            tracker=AlertStateTracker(
                cooldown_seconds=config.alerts.cooldown_seconds,
                policy=config.alerts.policy,
                overbought=config.alerts.overbought,
                oversold=config.alerts.oversold,
            ),
        )


class LeverageRSIBot:
    """Batched polling loop over the leveraged token universe."""

    def __init__(
        self,
        config: BotConfig,
        client: ExchangeClient,
        dispatcher: NotificationDispatcher,
        context: Optional[MonitorContext] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.dispatcher = dispatcher
        self.context = context or MonitorContext.from_config(config)

        self._active = threading.Event()
        self._stopping = threading.Event()
        self._wake = threading.Event()
        self._restart_requested = threading.Event()
        self._running = threading.Event()
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._loop_owner: Optional[threading.Thread] = None
        self.fatal_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Per-symbol evaluation
    # ------------------------------------------------------------------

    def analyze_symbol(self, symbol: str, context: MonitorContext) -> bool:
        """Evaluate one symbol and alert if due. Returns True when an alert was delivered."""
        timeframe = self.config.exchange.timeframe
        logger.debug("Analyzing %s...", symbol)

        candles = self.client.fetch_candles(symbol, timeframe, self.config.exchange.candle_limit)
        snapshot = calculate_indicators(candles)
        decision = context.tracker.evaluate(symbol, snapshot.rsi)

        logger.info(
            "[ANALYSIS] %s - RSI: %.2f | State: %s", symbol, snapshot.rsi, decision.state.value,
            extra={"symbol": symbol, "rsi": round(snapshot.rsi, 2)},
        )

        if not decision.should_alert:
            context.tracker.commit(decision)
            return False

        context.stats.record_alert_triggered()
        message = format_rsi_alert(symbol, decision.state, snapshot, timeframe)
        logger.info("Sending alert for %s...", symbol, extra={"symbol": symbol})
        result = self.dispatcher.send(message)
        context.tracker.commit(decision, delivered=result.success)

        if result.success:
            context.stats.record_alert_sent()
            logger.info("Alert delivered for %s", symbol, extra={"symbol": symbol})
            return True

        context.stats.record_alert_failed()
        logger.warning("Alert for %s was not delivered: %s", symbol, result.error,
                       extra={"symbol": symbol})
        return False

    def _evaluate_safely(self, symbol: str) -> bool:
        context = self.context
        try:
            return self.analyze_symbol(symbol, context)
        except InsufficientDataError as e:
            logger.warning("Not enough data for %s: %s", symbol, e, extra={"symbol": symbol})
            context.stats.record_error(f"Insufficient data for {symbol}", symbol=symbol, error=str(e))
        except (FetchError, ComputationError) as e:
            logger.error("Error analyzing %s: %s", symbol, e, extra={"symbol": symbol})
            context.stats.record_error(f"Error analyzing {symbol}", symbol=symbol, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error analyzing %s", symbol, extra={"symbol": symbol})
            context.stats.record_error(f"Unexpected error analyzing {symbol}", symbol=symbol, error=str(e))
        return False

    # ------------------------------------------------------------------
    # Cycle and loop
    # ------------------------------------------------------------------

    def _interrupted(self) -> bool:
        return self._stopping.is_set() or self._restart_requested.is_set()

    def run_cycle(self) -> int:
        """
        Run one pass over the symbol universe.

        Returns:
            Number of alerts delivered

        Raises:
            MarketLoadError: The symbol universe could not be loaded
        """
        stats = self.context.stats
        logger.info("Starting monitoring cycle #%d...", stats.cycles_completed + 1)

        symbols: List[str] = sorted(self.client.list_leveraged_symbols())
        if not symbols:
            logger.warning("No leveraged tokens found to monitor")
            return 0

        batch_size = max(1, self.config.execution.batch_size)
        batch_delay = self.config.execution.batch_delay_seconds
        batches = [symbols[i:i + batch_size] for i in range(0, len(symbols), batch_size)]
        alerts_sent = 0

        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="rsi-batch") as pool:
            for index, batch in enumerate(batches):
                if self._interrupted():
                    logger.warning("Cycle interrupted after %d/%d batches", index, len(batches))
                    return alerts_sent

                alerts_sent += sum(1 for sent in pool.map(self._evaluate_safely, batch) if sent)

                if index < len(batches) - 1 and batch_delay > 0:
                    self._wake.wait(batch_delay)

        completed = stats.record_cycle()
        logger.info(
            "Cycle #%d completed: %d symbols, %d alerts sent",
            completed, len(symbols), alerts_sent,
        )
        return alerts_sent

    def _reset_state(self) -> None:
        self.context.tracker.reset()
        self.context.stats.reset()
        logger.info("Bot state reset; monitoring restarts now")

    def _apply_restart(self) -> None:
        self._restart_requested.clear()
        self._reset_state()
        if self.config.execution.send_test_message_on_start:
            self.dispatcher.send_test_message()

    def run(self, run_once: bool = False) -> None:
        """
        Main loop. Blocks until ``stop()`` or, with ``run_once``, after one cycle.

        Raises:
            MarketLoadError: The symbol universe could not be loaded
        """
        interval = self.config.execution.cycle_interval_seconds
        error_cooldown = self.config.execution.error_cooldown_seconds

        current = threading.current_thread()
        with self._lock:
            if self._stopping.is_set():
                logger.info("Stop requested before the loop started; not monitoring")
                if self._loop_owner is current:
                    self._loop_owner = None
                    self._running.clear()
                return
            if self._loop_owner is not None and self._loop_owner is not current:
                logger.warning("Monitoring loop already running in %s; not starting another",
                               self._loop_owner.name)
                return
            self._loop_owner = current
            self._active.set()
            self._running.set()

        logger.info("Monitoring started (cycle interval %ds)", interval)
        try:
            while self._active.is_set() and not self._stopping.is_set():
                if self._restart_requested.is_set():
                    self._apply_restart()
                self._wake.clear()

                try:
                    self.run_cycle()
                except MarketLoadError as e:
                    logger.critical("Could not load the market universe: %s", e)
                    self.context.stats.record_error("Market load failed", error=str(e))
                    self._active.clear()
                    raise
                except Exception as e:
                    logger.critical("Unexpected error in monitoring loop: %s", e, exc_info=True)
                    self.context.stats.record_error("Monitoring loop error", error=str(e))
                    if run_once:
                        raise
                    self._wake.wait(error_cooldown)
                    continue

                if run_once:
                    break
                if self._restart_requested.is_set() or not self._active.is_set():
                    continue

                logger.info("Next cycle in %d seconds", interval)
                self._wake.wait(interval)
        finally:
            with self._lock:
                self._running.clear()
                self._loop_owner = None
            logger.info("Monitoring stopped")

    def stop(self) -> None:
        """Stop after the in-flight batch; no further batch or cycle is scheduled."""
        # Reentrant lock: the signal handler may interrupt the main thread while it holds it
        with self._lock:
            if self._active.is_set():
                logger.info("Stopping monitoring...")
            self._stopping.set()
            self._active.clear()
            self._wake.set()

    def restart(self) -> None:
        """
        Clear per-symbol state and statistics and start a fresh cycle.

        Raises:
            RuntimeError: Shutdown has been requested; the bot is not restarted
        """
        with self._lock:
            if self._stopping.is_set():
                logger.warning("Restart refused: shutdown in progress")
                raise RuntimeError("Shutdown in progress; restart refused")

            if self._running.is_set():
                logger.info("Restart requested; resetting before the next batch")
                self._restart_requested.set()
                self._active.set()
                self._wake.set()
                return

            logger.info("Restart requested while idle; starting monitoring")
            self._reset_state()
            self._start_thread(send_test_message=self.config.execution.send_test_message_on_start)

    def _run_background(self, send_test_message: bool) -> None:
        try:
            if send_test_message:
                self.dispatcher.send_test_message()
            self.run()
        except MarketLoadError as e:
            self.fatal_error = e
        except Exception as e:
            logger.critical("Monitoring thread crashed: %s", e, exc_info=True)
            self.fatal_error = e

    def _start_thread(self, send_test_message: bool) -> Optional[threading.Thread]:
        # Caller holds self._lock
        if self._loop_owner is not None:
            logger.info("Monitoring loop already running in %s", self._loop_owner.name)
            return self._thread if self._loop_owner is self._thread else None
        self._stopping.clear()
        self._active.set()
        self.fatal_error = None
        self._thread = threading.Thread(
            target=self._run_background, args=(send_test_message,), name="rsi-monitor", daemon=True
        )
        # Claimed before the thread starts so a concurrent restart or run() sees the loop
        self._loop_owner = self._thread
        self._running.set()
        self._thread.start()
        return self._thread

    def start_background(self, send_test_message: bool = False) -> Optional[threading.Thread]:
        """Run the loop in a daemon thread unless a loop is already running."""
        with self._lock:
            return self._start_thread(send_test_message)

    def join(self, poll_interval: float = 1.0) -> None:
        """Wait for a background loop; re-raise the error that ended it, if any."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=poll_interval)
        if self.fatal_error is not None:
            raise self.fatal_error

    def is_active(self) -> bool:
        return self._active.is_set()


def build_dispatcher(config: BotConfig) -> NotificationDispatcher:
    notifiers = []
    for channel in config.get_telegram_channels():
        if not channel.is_configured:
            logger.warning("Telegram channel '%s' is not configured; skipping", channel.name)
            continue
        notifiers.append(TelegramNotifier(
            bot_token=channel.bot_token or "",
            chat_id=channel.chat_id or "",
            name=channel.name,
            max_attempts=config.notifications.max_attempts,
            retry_delay=config.notifications.retry_delay_seconds,
            rate_limit_fallback=config.notifications.rate_limit_fallback_seconds,
            max_rate_limit_waits=config.notifications.max_rate_limit_waits,
            timeout=config.notifications.request_timeout_seconds,
        ))
    return NotificationDispatcher(notifiers)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Leverage RSI Bot - RSI alerts for KuCoin leveraged tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python leverage_rsi_bot.py --once                 # Run one cycle
  python leverage_rsi_bot.py --cooldown 30          # 30 minute re-alert cooldown
  python leverage_rsi_bot.py --alert-policy edge    # Alert only on entering a state
  python leverage_rsi_bot.py --config config.json   # Use custom config file
        """
    )
    parser.add_argument("--once", action="store_true", help="Run only one cycle")
    parser.add_argument("--config", type=str, default=None, help="Path to configuration JSON file")
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--detailed-logging",
        action="store_true",
        help="Enable detailed logging with function names and line numbers",
    )
    parser.add_argument("--port", type=int, default=None, help="Status server port (default: $PORT or 3000)")
    parser.add_argument("--no-server", action="store_true", help="Do not start the status server")
    parser.add_argument(
        "--cooldown",
        type=float,
        default=None,
        help="Minutes before repeating an alert per symbol (overrides config)",
    )
    parser.add_argument(
        "--alert-policy",
        type=str,
        default=None,
        choices=["cooldown", "edge"],
        help="Re-alert policy while a symbol stays extreme",
    )
    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Skip environment validation (not recommended)",
    )
    args = parser.parse_args()

    load_dotenv(BASE_DIR / ".env")
    load_dotenv(BASE_DIR.parent / ".env")

    config_file = Path(args.config) if args.config else (BASE_DIR / "config.json")
    config = load_config(config_file)
    if args.cooldown is not None:
        config.alerts.cooldown_minutes = args.cooldown
    if args.alert_policy:
        config.alerts.policy = parse_alert_policy(args.alert_policy)
    if args.port is not None:
        config.execution.server_port = args.port

    log_level = args.log_level or config.execution.log_level
    enable_detailed = args.detailed_logging or config.execution.enable_detailed_logging

    global logger
    logger = setup_logging(
        log_level=log_level,
        log_dir=Path(config.execution.log_dir),
        log_name="leverage_rsi",
        enable_detailed=enable_detailed,
        event_log_file=Path(config.execution.event_log_file),
        event_log_max_entries=config.execution.event_log_max_entries,
    )
    logger.info("=" * 60)
    logger.info("🤖 Leverage RSI Bot Starting...")
    logger.info("=" * 60)
    logger.info("📝 Log level: %s | Detailed: %s", log_level, enable_detailed)
    logger.info("⚙️  Config file: %s", config_file if config_file.exists() else "Using defaults")
    logger.info(
        "📊 Thresholds: %.0f/%.0f | Cooldown: %.0fmin | Policy: %s",
        config.alerts.overbought, config.alerts.oversold,
        config.alerts.cooldown_minutes, config.alerts.policy.value,
    )

    if not args.skip_validation:
        is_valid, errors = config.validate_environment()
        if not is_valid:
            logger.critical("❌ Environment validation failed - exiting")
            for error in errors:
                logger.critical("  - %s", error)
            logger.critical("Use --skip-validation to bypass (not recommended)")
            sys.exit(1)

    client = ExchangeClient.from_config(config)
    try:
        client.ping()
    except Exception as e:
        logger.critical("Monitoring not started: exchange API unreachable (%s)", e)
        sys.exit(1)

    dispatcher = build_dispatcher(config)
    bot = LeverageRSIBot(config, client, dispatcher)

    server = None
    if not args.no_server:
        server = StatusServer(
            bot,
            dispatcher,
            host=config.execution.server_host,
            port=config.execution.server_port,
            event_log_file=Path(config.execution.event_log_file),
        )
        server.start()

    def signal_handler(signum: int, frame: Optional[FrameType]) -> None:
        logger.info("Received %s, stopping monitoring", signal.Signals(signum).name)
        bot.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if config.execution.send_test_message_on_start:
        dispatcher.send_test_message()

    exit_code = 0
    try:
        bot.run(run_once=args.once)
        # A restart from the status surface may have moved the loop to a thread
        bot.join()
    except MarketLoadError:
        logger.critical("Exiting: no symbol universe available")
        exit_code = 1
    except Exception as e:
        logger.critical("Exiting after unrecoverable error: %s", e)
        exit_code = 1
    finally:
        if server is not None:
            server.stop()
        dispatcher.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
