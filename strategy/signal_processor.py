import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from api.messages import format_transition
from api.metrics import metrics
from strategy.price_cache import PriceCache
from strategy.signal_manager import SignalManager
from strategy.signal_types import Transition
from strategy.spread import compute_spread_pct, parse_price

logger = logging.getLogger(__name__)


class TickProcessor:
    """Turns ticker payloads into spread signal transitions and notifications.

    ``process_ticker`` has no suspension points, so each tick is applied to
    the price cache and signal maps atomically relative to every other tick
    on the event loop. Ticks of one connection are therefore handled in
    arrival order.
    """

    def __init__(self, config: Mapping[str, Any], notifier=None, clock: Callable[[], float] = time.time):
        self.config = config
        spread_cfg = config.get('spread') or {}
        self.price_cache = PriceCache(fallback=bool(spread_cfg.get('reference_fallback', True)))
        self.signal_manager = SignalManager(config)
        self.notifier = notifier
        self.clock = clock
        self._owners: Dict[str, int] = {}

    def assign_shard(self, shard_index: int, symbols: Iterable[str]) -> None:
        """Record that ``shard_index`` is the only connection allowed to feed ``symbols``."""
        for symbol in symbols:
            owner = self._owners.get(symbol)
            if owner is not None and owner != shard_index:
                raise ValueError(f"{symbol} already assigned to shard {owner}, cannot assign to {shard_index}")
            self._owners[symbol] = shard_index

    def owner_of(self, symbol: str) -> Optional[int]:
        return self._owners.get(symbol)

    def process_ticker(self, data: Dict[str, Any], shard_index: Optional[int] = None) -> Optional[Transition]:
        symbol = data.get('symbol')
        if not symbol:
            metrics.record_discard('no_symbol')
            return None

        if shard_index is not None and self._owners:
            owner = self._owners.get(symbol)
            if owner != shard_index:
                logger.debug("Ignoring %s on shard %s (owned by %s)", symbol, shard_index, owner)
                metrics.record_discard('foreign_shard')
                return None

        # The cache takes a valid indexPrice even when lastPrice is unusable.
        reference_price = self.price_cache.resolve_reference_price(symbol, data.get('indexPrice'))
        traded_price = parse_price(data.get('lastPrice'))
        if traded_price is None or reference_price is None:
            metrics.record_discard('invalid_price')
            return None

        spread_pct = compute_spread_pct(traded_price, reference_price)
        metrics.record_tick()
        transition = self.signal_manager.update(symbol, traded_price, reference_price, spread_pct, now=self.clock())
        if transition is not None:
            metrics.record_signal(transition.event.value, len(self.signal_manager.active_signals))
        return transition

    def process_payload(self, payload: Any, shard_index: Optional[int] = None) -> List[Transition]:
        """Accept a ticker ``data`` field, which Bybit sends as an object or a list of objects."""
        items = payload if isinstance(payload, list) else [payload]
        transitions = []
        for item in items:
            if not isinstance(item, dict):
                metrics.record_discard('not_an_object')
                continue
            transition = self.process_ticker(item, shard_index)
            if transition is not None:
                transitions.append(transition)
        return transitions

    async def handle_payload(self, payload: Any, shard_index: Optional[int] = None) -> List[Transition]:
        transitions = self.process_payload(payload, shard_index)
        if self.notifier is None:
            return transitions
        for transition in transitions:
            text = format_transition(transition)
            if self.notifier.blocking:
                await self.notifier.send(text)
            else:
                self.notifier.notify(text)
        return transitions
