import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from config import config


logger = logging.getLogger(__name__)


class BybitAPIError(Exception):
    def __init__(self, status: int, code: Optional[int], msg: Optional[str], body: str = ""):
        self.status = status
        self.code = code
        self.msg = msg
        self.body = body
        text = f"Bybit API error (status={status}, retCode={code}, retMsg={msg})"
        super().__init__(text)


class BybitRESTClient:
    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or config.exchange.get("rest_url", "https://api.bybit.com")).rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=15)) as resp:
            text = await resp.text()
            try:
                payload = json.loads(text)
            except ValueError:
                payload = None

            if resp.status >= 400 or not isinstance(payload, dict):
                code = payload.get("retCode") if isinstance(payload, dict) else None
                msg = payload.get("retMsg") if isinstance(payload, dict) else None
                raise BybitAPIError(resp.status, code, msg, text)

            # Bybit reports application errors with HTTP 200 and a non-zero retCode.
            if payload.get("retCode") != 0:
                raise BybitAPIError(resp.status, payload.get("retCode"), payload.get("retMsg"), text)
            return payload


async def fetch_active_symbols(
    client: BybitRESTClient,
    category: Optional[str] = None,
    quote_coin: Optional[str] = None,
    page_limit: int = 1000,
) -> List[str]:
    """Return the tradable symbols of one product category quoted in ``quote_coin``.

    Follows ``nextPageCursor`` until the listing is exhausted. Any API error
    propagates; callers treat it as fatal at startup.
    """
    category = category or config.exchange.get("category", "linear")
    quote_coin = quote_coin or config.exchange.get("quote_coin", "USDT")

    logger.info("[API] Fetching active %s symbols from Bybit...", category)
    symbols: List[str] = []
    seen = set()
    cursor: Optional[str] = None
    while True:
        params: Dict[str, Any] = {"category": category, "status": "Trading", "limit": page_limit}
        if cursor:
            params["cursor"] = cursor
        payload = await client.get("/v5/market/instruments-info", params=params)
        result = payload.get("result") or {}
        for item in result.get("list") or []:
            symbol = item.get("symbol")
            if not symbol or symbol in seen:
                continue
            if item.get("status") == "Trading" and item.get("quoteCoin") == quote_coin:
                seen.add(symbol)
                symbols.append(symbol)
        cursor = result.get("nextPageCursor") or None
        if not cursor:
            break

    logger.info("[API] Found %s active %s %s symbols", len(symbols), quote_coin, category)
    return symbols
