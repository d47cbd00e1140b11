import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from api.metrics import metrics
from config import config
from monitoring.async_utils import cancel_tasks
from .subscription_planner import ConnectionShard


logger = logging.getLogger(__name__)

PayloadHandler = Callable[[Any, int], Awaitable[Any]]


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


class ConnectionSupervisor:
    """Keeps one shard of the universe subscribed on one WebSocket connection.

    ``run`` is a retry loop that owns the shard for its whole lifetime: each
    attempt opens a fresh connection, subscribes in batches and streams until
    the connection drops, then waits ``reconnect_delay_s`` and starts over.
    Retries are unbounded; only ``close`` or task cancellation ends the loop.
    """

    def __init__(
        self,
        shard: ConnectionShard,
        on_payload: PayloadHandler,
        ws_cfg: Optional[Mapping[str, Any]] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        cfg = ws_cfg if ws_cfg is not None else config.websocket
        self.shard = shard
        self.on_payload = on_payload
        self.label = f"#{shard.index + 1}"
        self.url = cfg.get("url") or config.exchange.get("ws_url", "wss://stream.bybit.com/v5/public/linear")
        self.topic_prefix = cfg.get("topic_prefix") or config.exchange.get("topic_prefix", "tickers.")
        self.batch_delay_s = float(cfg.get("batch_delay_ms", 200)) / 1000.0
        self.connect_timeout_s = float(cfg.get("connect_timeout_s", 30))
        self.reconnect_delay_s = float(cfg.get("reconnect_delay_s", 5))
        self.heartbeat_interval_s = float(cfg.get("heartbeat_interval_s", 20))
        self._connect = connect or websockets.connect

        self.ws = None
        self.state = ConnectionState.IDLE
        self.running = False
        self.attempts = 0
        self.reconnects = 0
        self.last_message_at: Optional[float] = None
        self.first_attempt_done = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task] = None

    def _set_state(self, state: ConnectionState) -> None:
        old = self.state.value if self.state is not ConnectionState.IDLE else None
        new = state.value if state is not ConnectionState.STOPPED else None
        metrics.connection_state_changed(old, new)
        self.state = state

    async def run(self):
        self.running = True
        try:
            while self.running:
                self.attempts += 1
                try:
                    await self._connect_and_stream()
                except asyncio.CancelledError:
                    raise
                except asyncio.TimeoutError:
                    logger.error(
                        "[WS] Connection %s not ready within %.0fs",
                        self.label,
                        self.connect_timeout_s,
                    )
                except ConnectionClosed as e:
                    logger.warning("[WS] Connection %s dropped: %s", self.label, e)
                except Exception as e:
                    logger.error("[WS] Connection %s error: %s", self.label, e)
                finally:
                    await self._release()
                    self.first_attempt_done.set()

                if not self.running:
                    break
                self._set_state(ConnectionState.CLOSED)
                self._set_state(ConnectionState.RECONNECTING)
                self.reconnects += 1
                metrics.record_reconnect(str(self.shard.index))
                logger.info(
                    "[WS] Connection %s closed. Reconnecting in %.1fs (reconnect %s)...",
                    self.label,
                    self.reconnect_delay_s,
                    self.reconnects,
                )
                await asyncio.sleep(self.reconnect_delay_s)
        finally:
            self.running = False
            await self._release()
            self.first_attempt_done.set()
            self._set_state(ConnectionState.STOPPED)

    async def _connect_and_stream(self):
        await asyncio.wait_for(self._open(), timeout=self.connect_timeout_s)
        ws = self.ws
        self._set_state(ConnectionState.STREAMING)
        self.first_attempt_done.set()
        self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))

        async for raw in ws:
            self.last_message_at = time.monotonic()
            await self._route(ws, raw)
            if not self.running:
                return
        if self.running:
            logger.warning("[WS] Connection %s closed by server", self.label)

    async def _open(self):
        self._set_state(ConnectionState.CONNECTING)
        logger.info("[WS] Creating connection %s...", self.label)
        self.ws = await self._connect(
            self.url,
            ping_interval=self.heartbeat_interval_s,
            ping_timeout=self.heartbeat_interval_s,
            open_timeout=None,
        )
        logger.info("[WS] Connection %s opened", self.label)
        await self._subscribe(self.ws)

    async def _subscribe(self, ws):
        self._set_state(ConnectionState.SUBSCRIBING)
        batches = self.shard.batches()
        logger.info(
            "[WS] Subscribing to %s symbols in %s batches on connection %s...",
            len(self.shard),
            len(batches),
            self.label,
        )
        for i, batch in enumerate(batches):
            topics = [f"{self.topic_prefix}{symbol}" for symbol in batch]
            await ws.send(json.dumps({"op": "subscribe", "req_id": f"{self.shard.index}-{i}", "args": topics}))
            logger.debug("[WS] Batch %s/%s on %s: %s symbols", i + 1, len(batches), self.label, len(batch))
            if i < len(batches) - 1:
                await asyncio.sleep(self.batch_delay_s)

    async def _route(self, ws, raw):
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("[WS] Parse error on connection %s: %s", self.label, e)
            metrics.record_drop("malformed")
            return
        if not isinstance(message, dict):
            metrics.record_drop("unexpected")
            return

        topic = message.get("topic")
        if isinstance(topic, str) and topic.startswith(self.topic_prefix):
            data = message.get("data")
            if data is None:
                metrics.record_drop("empty")
                return
            try:
                await self.on_payload(data, self.shard.index)
            except Exception:
                logger.exception("[WS] Ticker handler failed on connection %s", self.label)
            return

        op = message.get("op")
        # Replies to our own heartbeat carry "success"; a bare ping is a server probe.
        if op == "ping" and "success" not in message:
            await ws.send(json.dumps({"op": "pong", "req_id": message.get("req_id")}))
        elif op == "subscribe" and message.get("success") is False:
            logger.warning(
                "[WS] Subscription rejected on connection %s: %s",
                self.label,
                message.get("ret_msg"),
            )

    async def _heartbeat(self, ws):
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval_s)
                await ws.send(json.dumps({"op": "ping"}))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed:
            return
        except Exception as e:
            logger.warning("[WS] Heartbeat failed on connection %s: %s", self.label, e)

    async def _release(self):
        if self._heartbeat_task is not None:
            await cancel_tasks([self._heartbeat_task])
            self._heartbeat_task = None
        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("[WS] Error closing connection %s: %s", self.label, e)

    async def close(self):
        self.running = False
        await self._release()
