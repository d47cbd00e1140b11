import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from .signal_states import ActiveState, IdleState
from .signal_types import (
    ActiveSignal,
    Decision,
    SignalEvent,
    SignalState,
    SpreadRules,
    SpreadSample,
    Transition,
)
from .spread import classify_direction


logger = logging.getLogger(__name__)

_STATE_MAP = {
    SignalState.IDLE: IdleState(),
    SignalState.ACTIVE: ActiveState(),
}


def decide(
    current: Optional[ActiveSignal],
    cooldown_at: Optional[float],
    traded_price: float,
    reference_price: float,
    spread_pct: float,
    abs_spread_pct: float,
    now: float,
    entry_threshold_pct: float,
    exit_threshold_pct: float,
    cooldown_s: float,
) -> Decision:
    """Pure entry/exit decision for a single instrument and a single tick.

    ``current`` is the instrument's active signal or None when idle;
    ``cooldown_at`` is the time of its last entry, or None if it never had
    one. Nothing is mutated; the caller stores ``next_state`` and
    ``next_cooldown_at`` together with the emitted event.
    """
    rules = SpreadRules(entry_threshold_pct, exit_threshold_pct, cooldown_s)
    sample = SpreadSample(
        traded_price=traded_price,
        reference_price=reference_price,
        spread_pct=spread_pct,
        abs_spread_pct=abs_spread_pct,
        direction=classify_direction(traded_price, reference_price),
        timestamp=now,
    )
    return _decide(current, cooldown_at, sample, rules)


def _decide(
    current: Optional[ActiveSignal],
    cooldown_at: Optional[float],
    sample: SpreadSample,
    rules: SpreadRules,
) -> Decision:
    state = SignalState.ACTIVE if current is not None else SignalState.IDLE
    return _STATE_MAP[state].process(current, cooldown_at, sample, rules)


class SignalManager:
    """Owns per-instrument signal state and entry cooldowns."""

    def __init__(self, config: Mapping[str, Any]):
        signals_cfg = config.get('signals') or {}
        self.rules = SpreadRules(
            entry_threshold_pct=float(signals_cfg.get('entry_threshold_pct', 0.7)),
            exit_threshold_pct=float(signals_cfg.get('exit_threshold_pct', 0.5)),
            cooldown_s=float(signals_cfg.get('cooldown_ms', 60000)) / 1000.0,
        )
        self.active_signals: Dict[str, ActiveSignal] = {}
        self.last_signal_at: Dict[str, float] = {}

    def update(
        self,
        symbol: str,
        traded_price: float,
        reference_price: float,
        spread_pct: float,
        now: Optional[float] = None,
    ) -> Optional[Transition]:
        now = time.time() if now is None else now
        sample = SpreadSample(
            traded_price=traded_price,
            reference_price=reference_price,
            spread_pct=spread_pct,
            abs_spread_pct=abs(spread_pct),
            direction=classify_direction(traded_price, reference_price),
            timestamp=now,
        )
        current = self.active_signals.get(symbol)
        decision = _decide(current, self.last_signal_at.get(symbol), sample, self.rules)
        if not decision.changed:
            return None
        self._apply(symbol, decision)

        if decision.event is SignalEvent.ENTRY:
            logger.info("[ENTRY] %s %s spread=%.3f%%", symbol, decision.direction.value, spread_pct)
        else:
            logger.info("[EXIT] %s %s spread=%.3f%%", symbol, decision.direction.value, spread_pct)

        return Transition(
            symbol=symbol,
            event=decision.event,
            direction=decision.direction,
            traded_price=traded_price,
            reference_price=reference_price,
            spread_pct=spread_pct,
            entry_spread_pct=decision.entry_spread_pct,
            timestamp=now,
        )

    def _apply(self, symbol: str, decision: Decision) -> None:
        if decision.next_state is None:
            self.active_signals.pop(symbol, None)
        else:
            self.active_signals[symbol] = decision.next_state
        if decision.next_cooldown_at is not None:
            self.last_signal_at[symbol] = decision.next_cooldown_at

    def state_of(self, symbol: str) -> SignalState:
        if symbol in self.active_signals:
            return SignalState.ACTIVE
        return SignalState.IDLE

    def get_active_signals(self) -> List[Dict]:
        return [
            dict(symbol=symbol, **signal.to_dict())
            for symbol, signal in self.active_signals.items()
        ]
