"""HTML message bodies for the Telegram chat."""
from datetime import datetime, timezone
from decimal import Decimal
from html import escape
from typing import Optional

from strategy.signal_types import SignalEvent, Transition


def _price(value: float) -> str:
    # Plain decimal notation, so 1.234e-05 renders as 0.00001234.
    return format(Decimal(repr(float(value))), "f")


def _iso_time(timestamp: Optional[float] = None) -> str:
    if timestamp is None:
        moment = datetime.now(timezone.utc)
    else:
        moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def format_entry(transition: Transition) -> str:
    return (
        "📊 <b>SPREAD SIGNAL</b>\n"
        f"SYMBOL: <code>{escape(transition.symbol)}</code>\n"
        f"DIRECTION: <b>{transition.direction.value}</b>\n"
        f"LAST_PRICE: {_price(transition.traded_price)}\n"
        f"INDEX_PRICE: {_price(transition.reference_price)}\n"
        f"SPREAD: <b>{transition.spread_pct:.3f}%</b>\n"
        f"TIME: {_iso_time(transition.timestamp)}"
    )


def format_exit(transition: Transition) -> str:
    return (
        "✅ <b>SPREAD CLOSED</b>\n"
        f"SYMBOL: <code>{escape(transition.symbol)}</code>\n"
        f"DIRECTION: {transition.direction.value}\n"
        f"LAST_PRICE: {_price(transition.traded_price)}\n"
        f"INDEX_PRICE: {_price(transition.reference_price)}\n"
        f"SPREAD: {transition.spread_pct:.3f}%\n"
        f"ENTRY WAS: {transition.entry_spread_pct:.3f}%\n"
        f"TIME: {_iso_time(transition.timestamp)}"
    )


def format_transition(transition: Transition) -> str:
    if transition.event is SignalEvent.ENTRY:
        return format_entry(transition)
    return format_exit(transition)


def format_startup(symbol_count: int, entry_threshold_pct: float, exit_threshold_pct: float,
                   cooldown_s: float) -> str:
    return (
        "🤖 <b>BYBIT SPREAD MONITOR STARTED</b>\n\n"
        f"Monitoring: {symbol_count} symbols\n"
        f"Entry Threshold: {entry_threshold_pct}%\n"
        f"Exit Threshold:  {exit_threshold_pct}%\n"
        f"Signal Cooldown: {cooldown_s:g}s"
    )


def format_shutdown() -> str:
    return "🛑 <b>BYBIT SPREAD MONITOR STOPPED</b>"
