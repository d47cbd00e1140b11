import sys

sys.path.insert(0, '.')

from api.messages import format_entry, format_exit, format_transition
from strategy.signal_types import SignalEvent, Transition
from strategy.spread import Direction


def _transition(event, traded, reference, spread, entry_spread):
    return Transition(
        symbol='PEPEUSDT',
        event=event,
        direction=Direction.SHORT,
        traded_price=traded,
        reference_price=reference,
        spread_pct=spread,
        entry_spread_pct=entry_spread,
        timestamp=0.0,
    )


def test_low_prices_render_as_plain_decimals():
    text = format_entry(_transition(SignalEvent.ENTRY, 1.234e-05, 1.2e-05, 2.833, 2.833))
    assert 'LAST_PRICE: 0.00001234\n' in text
    assert 'INDEX_PRICE: 0.000012\n' in text
    assert 'e-05' not in text


def test_exit_message_carries_entry_spread():
    text = format_transition(_transition(SignalEvent.EXIT, 100.4, 100.0, 0.4, 0.8))
    assert text == format_exit(_transition(SignalEvent.EXIT, 100.4, 100.0, 0.4, 0.8))
    assert 'LAST_PRICE: 100.4\n' in text
    assert 'SPREAD: 0.400%' in text
    assert 'ENTRY WAS: 0.800%' in text
    assert 'TIME: 1970-01-01T00:00:00.000Z' in text
