from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .spread import Direction


class SignalState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class SignalEvent(Enum):
    NO_CHANGE = "no_change"
    ENTRY = "entry"
    EXIT = "exit"


@dataclass(frozen=True)
class ActiveSignal:
    direction: Direction
    entry_spread_pct: float
    entered_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'direction': self.direction.value,
            'entry_spread_pct': self.entry_spread_pct,
            'entered_at': self.entered_at,
        }


@dataclass(frozen=True)
class SpreadRules:
    entry_threshold_pct: float
    exit_threshold_pct: float
    cooldown_s: float

    def __post_init__(self):
        if self.exit_threshold_pct >= self.entry_threshold_pct:
            raise ValueError(
                f"exit threshold {self.exit_threshold_pct} must be below "
                f"entry threshold {self.entry_threshold_pct}"
            )
        if self.cooldown_s < 0:
            raise ValueError("cooldown must not be negative")


@dataclass(frozen=True)
class SpreadSample:
    traded_price: float
    reference_price: float
    spread_pct: float
    abs_spread_pct: float
    direction: Direction
    timestamp: float


@dataclass(frozen=True)
class Decision:
    """Outcome of one tick: the event plus the state and cooldown to store with it."""

    event: SignalEvent
    next_state: Optional[ActiveSignal]
    next_cooldown_at: Optional[float]
    direction: Optional[Direction] = None
    entry_spread_pct: Optional[float] = None
    exit_spread_pct: Optional[float] = None

    @property
    def changed(self) -> bool:
        return self.event is not SignalEvent.NO_CHANGE


@dataclass(frozen=True)
class Transition:
    symbol: str
    event: SignalEvent
    direction: Direction
    traded_price: float
    reference_price: float
    spread_pct: float
    entry_spread_pct: float
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'event': self.event.value,
            'direction': self.direction.value,
            'traded_price': self.traded_price,
            'reference_price': self.reference_price,
            'spread_pct': self.spread_pct,
            'entry_spread_pct': self.entry_spread_pct,
            'timestamp': self.timestamp,
        }
