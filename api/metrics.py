import errno
import logging
from prometheus_client import Counter, Gauge, start_http_server
from typing import Optional


logger = logging.getLogger(__name__)

_METRICS_PORT: Optional[int] = None


class MetricsCollector:
    def __init__(self):
        self.ticks_processed = Counter('ticks_processed_total', 'Ticker updates that reached the signal state machine')
        self.ticks_discarded = Counter('ticks_discarded_total', 'Ticker updates discarded before evaluation', ['reason'])

        self.signals = Counter('spread_signals_total', 'Spread signal transitions', ['event'])
        self.active_signals = Gauge('active_spread_signals', 'Instruments currently in an active spread signal')

        self.reconnect_count = Counter('websocket_reconnects_total', 'Total WebSocket reconnects', ['shard'])
        self.connections = Gauge('websocket_connections', 'WebSocket connections by lifecycle state', ['state'])
        self.dropped_frames = Counter('websocket_frames_dropped_total', 'Inbound frames dropped', ['reason'])

        self.notifications_sent = Counter('notifications_sent_total', 'Notifications delivered')
        self.notifications_failed = Counter('notifications_failed_total', 'Notifications not delivered', ['reason'])

    def record_tick(self):
        self.ticks_processed.inc()

    def record_discard(self, reason: str):
        self.ticks_discarded.labels(reason=reason).inc()

    def record_signal(self, event: str, active_count: int):
        self.signals.labels(event=event).inc()
        self.active_signals.set(active_count)

    def record_reconnect(self, shard: str):
        self.reconnect_count.labels(shard=shard).inc()

    def connection_state_changed(self, old_state: Optional[str], new_state: Optional[str]):
        if old_state:
            self.connections.labels(state=old_state).dec()
        if new_state:
            self.connections.labels(state=new_state).inc()

    def record_drop(self, reason: str):
        self.dropped_frames.labels(reason=reason).inc()

    def record_notification_sent(self):
        self.notifications_sent.inc()

    def record_notification_failed(self, reason: str):
        self.notifications_failed.labels(reason=reason).inc()


def start_metrics_server(port: Optional[int], port_scan: int = 0) -> Optional[int]:
    """Expose /metrics on the first free port in ``port .. port + port_scan``.

    Returns the bound port, or None when disabled. A second call reuses the
    running exporter.
    """
    global _METRICS_PORT
    if _METRICS_PORT is not None:
        return _METRICS_PORT
    if not port:
        logger.info("Prometheus metrics server disabled")
        return None

    first = int(port)
    last = first + max(0, int(port_scan or 0))
    for candidate in range(first, last + 1):
        try:
            start_http_server(candidate)
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.warning("Prometheus port %s in use", candidate)
            continue
        _METRICS_PORT = candidate
        logger.info("Prometheus metrics server started on port %s", candidate)
        return candidate
    raise RuntimeError(f"No free port for the Prometheus metrics server in {first}-{last}")


metrics = MetricsCollector()
