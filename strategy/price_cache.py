import logging
from typing import Any, Dict, Optional

from .spread import parse_price


logger = logging.getLogger(__name__)


class PriceCache:
    """Last valid reference price per instrument.

    The ticker feed does not carry ``indexPrice`` on every update, so a tick
    without one reuses the most recent value seen for the same symbol.
    """

    def __init__(self, fallback: bool = True):
        self.fallback = fallback
        self._prices: Dict[str, float] = {}

    def resolve_reference_price(self, symbol: str, incoming: Any) -> Optional[float]:
        price = parse_price(incoming)
        if price is not None:
            self._prices[symbol] = price
            return price
        if not self.fallback:
            return None
        return self._prices.get(symbol)

    def get(self, symbol: str) -> Optional[float]:
        return self._prices.get(symbol)

    def clear(self) -> None:
        self._prices.clear()

    def __len__(self) -> int:
        return len(self._prices)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._prices
