import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, Set

import aiohttp

from api.metrics import metrics
from config import config
from monitoring.async_utils import cancel_tasks, spawn_detached


logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Delivers HTML messages to one Telegram chat.

    ``notify`` never waits for delivery: each message is sent by a detached
    task whose failures are logged and counted, so a slow or failing Bot API
    cannot back up tick processing. ``send`` is the awaitable variant used
    for blocking mode and for the final shutdown message.
    """

    def __init__(
        self,
        cfg: Optional[Mapping[str, Any]] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        cfg = cfg if cfg is not None else config.notifications
        token = cfg.get('telegram_bot_token')
        self.chat_id = cfg.get('telegram_chat_id')
        api_url = str(cfg.get('api_url', 'https://api.telegram.org')).rstrip('/')
        if token and self.chat_id:
            self.url = f"{api_url}/bot{token}/sendMessage"
            self.enabled = True
        else:
            self.url = None
            self.enabled = False

        self.blocking = bool(cfg.get('blocking', False))
        self.max_pending = int(cfg.get('max_pending', 100))
        self.request_timeout_s = float(cfg.get('request_timeout_s', 10))
        self.shutdown_timeout_s = float(cfg.get('shutdown_timeout_s', 5))

        self._session_factory = session_factory or aiohttp.ClientSession
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = self._session_factory()
            return self._session

    def notify(self, text: str) -> Optional[asyncio.Task]:
        """Schedule delivery of ``text`` and return immediately."""
        if len(self._pending) >= self.max_pending:
            logger.warning("[TG] %s deliveries in flight; dropping message", len(self._pending))
            metrics.record_notification_failed('backlog')
            return None
        return spawn_detached(self.send(text), self._pending, name='telegram-send')

    async def send(self, text: str) -> bool:
        if not self.enabled:
            logger.info("[TG] Notifications disabled; message not sent: %s", text.splitlines()[0] if text else '')
            return False

        payload = {
            'chat_id': self.chat_id,
            'text': text,
            'parse_mode': 'HTML',
            'disable_web_page_preview': True,
        }
        try:
            session = await self._get_session()
            async with session.post(
                self.url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout_s),
            ) as response:
                body = await response.json(content_type=None)
                if response.status != 200 or not (isinstance(body, dict) and body.get('ok')):
                    description = body.get('description') if isinstance(body, dict) else body
                    logger.error("[TG] Send error: status=%s %s", response.status, description)
                    metrics.record_notification_failed(f"http_{response.status}")
                    return False
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error("[TG] Send error: timed out after %.1fs", self.request_timeout_s)
            metrics.record_notification_failed('timeout')
            return False
        except aiohttp.ClientError as e:
            logger.error("[TG] Send error: %s", e)
            metrics.record_notification_failed('network')
            return False
        except Exception as e:
            logger.error("[TG] Send error: %s", e)
            metrics.record_notification_failed('error')
            return False

        metrics.record_notification_sent()
        return True

    async def send_final(self, text: str) -> bool:
        """Best-effort message bounded by the shutdown timeout."""
        try:
            return await asyncio.wait_for(self.send(text), timeout=self.shutdown_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("[TG] Final notification not delivered within %.1fs", self.shutdown_timeout_s)
            return False

    async def close(self, drain: bool = True):
        if drain and self._pending:
            _, still_pending = await asyncio.wait(set(self._pending), timeout=self.shutdown_timeout_s)
            if still_pending:
                logger.warning("[TG] Abandoning %s undelivered notifications", len(still_pending))
        await cancel_tasks(list(self._pending))
        async with self._lock:
            if self._session is not None and not self._session.closed:
                await self._session.close()
            self._session = None
