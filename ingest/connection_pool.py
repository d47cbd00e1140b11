import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from config import config
from monitoring.async_utils import cancel_tasks
from .subscription_planner import ConnectionShard, plan_shards
from .websocket_client import ConnectionSupervisor, PayloadHandler


logger = logging.getLogger(__name__)


class ConnectionPool:
    """One ConnectionSupervisor per shard of the instrument universe."""

    def __init__(
        self,
        universe: Sequence[str],
        on_payload: PayloadHandler,
        ws_cfg: Optional[Mapping[str, Any]] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
    ):
        cfg = ws_cfg if ws_cfg is not None else config.websocket
        self.max_connections = int(cfg.get("max_connections", 5))
        self.batch_size = int(cfg.get("batch_size", 10))
        self.stagger_delay_s = float(cfg.get("stagger_delay_s", 1))

        self.shards: List[ConnectionShard] = plan_shards(universe, self.max_connections, self.batch_size)
        self.supervisors: List[ConnectionSupervisor] = [
            ConnectionSupervisor(shard, on_payload, ws_cfg=cfg, connect=connect)
            for shard in self.shards
        ]
        self._tasks: List[asyncio.Task] = []
        self.running = False

    @property
    def connections(self) -> List[Any]:
        """Live connection object per shard slot; None while a slot is reconnecting."""
        return [supervisor.ws for supervisor in self.supervisors]

    async def start(self):
        self.running = True
        total = len(self.supervisors)
        per_shard = len(self.shards[0]) if self.shards else 0
        logger.info("[WS] Creating %s connections (~%s symbols each)...", total, per_shard)

        for i, supervisor in enumerate(self.supervisors):
            if not self.running:
                break
            task = asyncio.create_task(supervisor.run(), name=f"ws-shard-{supervisor.shard.index}")
            self._tasks.append(task)

            ready = asyncio.create_task(supervisor.first_attempt_done.wait())
            try:
                await asyncio.wait({task, ready}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                await cancel_tasks([ready])

            if i < total - 1 and self.running:
                await asyncio.sleep(self.stagger_delay_s)

        if self.running:
            logger.info("[WS] All %s connections started", len(self._tasks))

    async def wait(self):
        """Block until every supervisor has exited."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def shutdown(self):
        self.running = False
        for supervisor in self.supervisors:
            supervisor.running = False
        for i, supervisor in enumerate(self.supervisors):
            if supervisor.ws is not None:
                await supervisor.close()
                logger.info("[SHUTDOWN] Closed connection #%s", i + 1)
        # Cancels supervisors sleeping before a reconnect as well.
        await cancel_tasks(self._tasks)
        self._tasks = []
