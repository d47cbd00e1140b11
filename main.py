import asyncio
import logging
import signal
import sys
from typing import Any, Awaitable, Callable, List, Optional

from api.alerts import TelegramNotifier
from api.messages import format_shutdown, format_startup
from api.metrics import start_metrics_server
from config import config, validate_settings
from ingest.bybit_rest import BybitRESTClient, fetch_active_symbols
from ingest.connection_pool import ConnectionPool
from monitoring.async_utils import cancel_tasks
from monitoring.logging_utils import setup_logging
from strategy.signal_processor import TickProcessor


logger = logging.getLogger(__name__)


class SpreadMonitor:
    """Discover the universe, stream tickers for it and report spread signals."""

    def __init__(
        self,
        config_obj: Optional[Any] = None,
        rest_client: Optional[BybitRESTClient] = None,
        notifier: Optional[TelegramNotifier] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        self.config = config_obj or config
        self.exchange_cfg = self.config.get('exchange') or {}
        self.websocket_cfg = self.config.get('websocket') or {}
        self.signals_cfg = self.config.get('signals') or {}
        self.monitoring_cfg = self.config.get('monitoring') or {}

        self.rest_client = rest_client or BybitRESTClient(self.exchange_cfg.get('rest_url'))
        self.notifier = notifier or TelegramNotifier(self.config.get('notifications') or {})
        self._connect = connect

        self.symbols: List[str] = []
        self.processor: Optional[TickProcessor] = None
        self.pool: Optional[ConnectionPool] = None
        self.started = False
        self._stopped = False
        self._failed = False
        self._graceful = True
        self._stop_requested = asyncio.Event()

    def log_banner(self):
        logger.info("=" * 60)
        logger.info("BYBIT SPREAD MONITOR")
        logger.info("=" * 60)
        logger.info("[CONFIG] Entry Threshold : %s%%", self.signals_cfg.get('entry_threshold_pct'))
        logger.info("[CONFIG] Exit  Threshold : %s%%", self.signals_cfg.get('exit_threshold_pct'))
        logger.info("[CONFIG] Signal Cooldown : %ss", float(self.signals_cfg.get('cooldown_ms', 60000)) / 1000)
        logger.info("[CONFIG] Max Connections : %s", self.websocket_cfg.get('max_connections'))
        logger.info("[CONFIG] Batch Size      : %s", self.websocket_cfg.get('batch_size'))
        logger.info("=" * 60)

    async def start(self):
        self.log_banner()
        validate_settings(self.config)

        try:
            self.symbols = await fetch_active_symbols(
                self.rest_client,
                category=self.exchange_cfg.get('category'),
                quote_coin=self.exchange_cfg.get('quote_coin'),
            )
        finally:
            await self.rest_client.close()
        if not self.symbols:
            raise RuntimeError("Universe discovery returned no tradable symbols")

        self.processor = TickProcessor(self.config, notifier=self.notifier)
        self.pool = ConnectionPool(
            self.symbols,
            self.processor.handle_payload,
            ws_cfg=self.websocket_cfg,
            connect=self._connect,
        )
        for shard in self.pool.shards:
            self.processor.assign_shard(shard.index, shard.symbols)

        start_metrics_server(
            self.monitoring_cfg.get('prometheus_port'),
            port_scan=self.monitoring_cfg.get('prometheus_port_scan', 0),
        )
        await self.pool.start()
        self.started = True
        logger.info("[BOT] Started and monitoring spreads on %s symbols", len(self.symbols))

        rules = self.processor.signal_manager.rules
        self.notifier.notify(
            format_startup(
                len(self.symbols),
                rules.entry_threshold_pct,
                rules.exit_threshold_pct,
                rules.cooldown_s,
            )
        )

    def request_stop(self, graceful: bool = True):
        if not graceful:
            self._graceful = False
        self._stop_requested.set()

    async def run_forever(self):
        start_task = asyncio.create_task(self.start())
        stop_task = asyncio.create_task(self._stop_requested.wait())
        try:
            await asyncio.wait({start_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if start_task.done():
                self._failed = start_task.exception() is not None
                # Re-raises fatal startup errors.
                start_task.result()
                await stop_task
        finally:
            await cancel_tasks([start_task, stop_task])
            await self.stop(graceful=self._graceful)

    async def stop(self, graceful: bool = True):
        if self._stopped:
            return
        self._stopped = True
        logger.info("[SHUTDOWN] Shutting down %s...", "gracefully" if graceful else "immediately")

        if self.pool is not None:
            await self.pool.shutdown()
        # SIGINT mid-startup still gets the final message; a fatal startup error does not.
        if graceful and not self._failed:
            await self.notifier.send_final(format_shutdown())
        await self.notifier.close(drain=graceful)
        await self.rest_client.close()


async def main() -> int:
    monitor = SpreadMonitor(config)
    loop = asyncio.get_running_loop()
    # SIGINT stops gracefully with a final notification; SIGTERM skips it.
    for sig, graceful in ((signal.SIGINT, True), (signal.SIGTERM, False)):
        try:
            loop.add_signal_handler(sig, monitor.request_stop, graceful)
        except NotImplementedError:
            signal.signal(sig, lambda *_args, g=graceful: loop.call_soon_threadsafe(monitor.request_stop, g))

    try:
        await monitor.run_forever()
    except Exception as e:
        logger.critical("[FATAL] %s", e)
        return 1
    return 0


def cli():
    setup_logging(config.monitoring.get('log_level', 'INFO'))
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
