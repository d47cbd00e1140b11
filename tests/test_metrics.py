import errno
import sys

sys.path.insert(0, '.')

import pytest

import api.metrics as metrics_module
from api.metrics import start_metrics_server


def _fake_exporter(monkeypatch, busy=(), fail_with=None):
    bound = []

    def _start(port):
        if fail_with is not None:
            raise fail_with
        if port in busy:
            raise OSError(errno.EADDRINUSE, 'Address already in use')
        bound.append(port)

    monkeypatch.setattr(metrics_module, '_METRICS_PORT', None)
    monkeypatch.setattr(metrics_module, 'start_http_server', _start)
    return bound


def test_disabled_when_port_unset(monkeypatch):
    bound = _fake_exporter(monkeypatch)
    assert start_metrics_server(0) is None
    assert start_metrics_server(None, port_scan=3) is None
    assert bound == []


def test_scans_past_busy_ports(monkeypatch):
    bound = _fake_exporter(monkeypatch, busy={9100, 9101})
    assert start_metrics_server(9100, port_scan=3) == 9102
    assert bound == [9102]
    # Already running: no second exporter.
    assert start_metrics_server(9200) == 9102
    assert bound == [9102]


def test_all_candidates_busy_raises(monkeypatch):
    _fake_exporter(monkeypatch, busy={9100, 9101})
    with pytest.raises(RuntimeError, match='9100-9101'):
        start_metrics_server(9100, port_scan=1)


def test_other_bind_errors_propagate(monkeypatch):
    _fake_exporter(monkeypatch, fail_with=OSError(errno.EACCES, 'Permission denied'))
    with pytest.raises(OSError):
        start_metrics_server(80, port_scan=5)
