from abc import ABC, abstractmethod
from typing import Optional

from .signal_types import ActiveSignal, Decision, SignalEvent, SpreadRules, SpreadSample


class SignalStateProcessor(ABC):
    @abstractmethod
    def process(
        self,
        current: Optional[ActiveSignal],
        cooldown_at: Optional[float],
        sample: SpreadSample,
        rules: SpreadRules,
    ) -> Decision:
        pass

    @staticmethod
    def _no_change(current: Optional[ActiveSignal], cooldown_at: Optional[float]) -> Decision:
        return Decision(SignalEvent.NO_CHANGE, next_state=current, next_cooldown_at=cooldown_at)


class IdleState(SignalStateProcessor):
    def process(self, current, cooldown_at, sample, rules) -> Decision:
        if sample.abs_spread_pct < rules.entry_threshold_pct:
            return self._no_change(current, cooldown_at)
        if cooldown_at is not None and (sample.timestamp - cooldown_at) < rules.cooldown_s:
            return self._no_change(current, cooldown_at)
        return Decision(
            SignalEvent.ENTRY,
            next_state=ActiveSignal(sample.direction, sample.spread_pct, sample.timestamp),
            next_cooldown_at=sample.timestamp,
            direction=sample.direction,
            entry_spread_pct=sample.spread_pct,
        )


class ActiveState(SignalStateProcessor):
    def process(self, current, cooldown_at, sample, rules) -> Decision:
        # Exits are never rate limited; re-entry while active is impossible.
        if sample.abs_spread_pct > rules.exit_threshold_pct:
            return self._no_change(current, cooldown_at)
        return Decision(
            SignalEvent.EXIT,
            next_state=None,
            next_cooldown_at=cooldown_at,
            direction=current.direction,
            entry_spread_pct=current.entry_spread_pct,
            exit_spread_pct=sample.spread_pct,
        )
