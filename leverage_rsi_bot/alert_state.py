"""
Per-symbol RSI alert state machine.

Each symbol is classified NEUTRAL, OVERBOUGHT or OVERSOLD from its latest RSI.
An alert fires when a symbol enters an extreme state, and (under the cooldown
policy) again while it stays extreme once the cooldown since the last
delivered alert has elapsed. De-escalation back to NEUTRAL never alerts.

Evaluation is split in two so the shared map is written once per symbol:

    decision = tracker.evaluate("BTC3L/USDT", 74.2)
    delivered = dispatcher.send(message).success if decision.should_alert else None
    tracker.commit(decision, delivered)
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from common.types import AlertPolicy, AlertState

logger = logging.getLogger(__name__)

DEFAULT_OVERBOUGHT = 70.0
DEFAULT_OVERSOLD = 30.0
DEFAULT_COOLDOWN_SECONDS = 15 * 60


def classify(rsi: float, overbought: float = DEFAULT_OVERBOUGHT,
             oversold: float = DEFAULT_OVERSOLD) -> AlertState:
    """Classify an RSI value; both thresholds are exclusive."""
    if rsi > overbought:
        return AlertState.OVERBOUGHT
    if rsi < oversold:
        return AlertState.OVERSOLD
    return AlertState.NEUTRAL


@dataclass
class SymbolAlertState:
    overbought: bool = False
    oversold: bool = False
    rsi: Optional[float] = None
    last_alert_timestamp: float = 0.0
    last_check: float = 0.0

    @property
    def state(self) -> AlertState:
        if self.overbought:
            return AlertState.OVERBOUGHT
        if self.oversold:
            return AlertState.OVERSOLD
        return AlertState.NEUTRAL

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["last_alert_time"] = (
            datetime.fromtimestamp(self.last_alert_timestamp, tz=timezone.utc).isoformat()
            if self.last_alert_timestamp else None
        )
        return data


@dataclass(frozen=True)
class AlertDecision:
    """Outcome of one evaluation, applied later by ``commit``."""
    symbol: str
    rsi: float
    state: AlertState
    previous: SymbolAlertState
    should_alert: bool
    now: float


class AlertStateTracker:
    """Holds the per-symbol alert state for the lifetime of the process."""

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        policy: AlertPolicy = AlertPolicy.COOLDOWN,
        overbought: float = DEFAULT_OVERBOUGHT,
        oversold: float = DEFAULT_OVERSOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not oversold < overbought:
            raise ValueError("oversold threshold must be below overbought threshold")
        self.cooldown_seconds = cooldown_seconds
        self.policy = policy
        self.overbought = overbought
        self.oversold = oversold
        self._clock = clock
        self._states: Dict[str, SymbolAlertState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, symbol: str) -> Optional[SymbolAlertState]:
        return self._states.get(symbol)

    def evaluate(self, symbol: str, rsi: float, now: Optional[float] = None) -> AlertDecision:
        """Decide whether ``symbol`` should alert. Does not modify the tracker."""
        if now is None:
            now = self._clock()
        previous = self._states.get(symbol) or SymbolAlertState()
        state = classify(rsi, self.overbought, self.oversold)

        entered = state.is_extreme and previous.state is not state
        cooled_down = (
            self.policy is AlertPolicy.COOLDOWN
            and state.is_extreme
            and now - previous.last_alert_timestamp > self.cooldown_seconds
        )

        return AlertDecision(
            symbol=symbol,
            rsi=rsi,
            state=state,
            previous=previous,
            should_alert=entered or cooled_down,
            now=now,
        )

    def commit(self, decision: AlertDecision, delivered: Optional[bool] = None) -> SymbolAlertState:
        """
        Write the evaluated state back.

        Args:
            decision: Result of ``evaluate``
            delivered: Whether the alert reached at least one channel; ignored
                       when no alert was due

        A failed delivery keeps the previous flags and timestamp so the next
        cycle sees the same transition again.
        """
        previous = decision.previous
        if decision.should_alert and not delivered:
            new_state = SymbolAlertState(
                overbought=previous.overbought,
                oversold=previous.oversold,
                rsi=decision.rsi,
                last_alert_timestamp=previous.last_alert_timestamp,
                last_check=decision.now,
            )
        else:
            new_state = SymbolAlertState(
                overbought=decision.state is AlertState.OVERBOUGHT,
                oversold=decision.state is AlertState.OVERSOLD,
                rsi=decision.rsi,
                last_alert_timestamp=(
                    decision.now if decision.should_alert else previous.last_alert_timestamp
                ),
                last_check=decision.now,
            )

        self._states[decision.symbol] = new_state
        return new_state

    def reset(self) -> None:
        count = len(self._states)
        self._states.clear()
        logger.info("Cleared alert state for %d symbols", count)

    def summary(self, limit: int = 20) -> List[Dict[str, Any]]:
        """First ``limit`` symbol states, for the status endpoint."""
        items = list(self._states.items())[:limit]
        return [{"symbol": symbol, **state.as_dict()} for symbol, state in items]
