"""Pyth Hermes 价格服务客户端"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

from perps_view.models import PriceRecord

ZERO_FEED_ID = "0x" + "00" * 32


class HermesAPIError(Exception):
    """Hermes 请求失败（整批）"""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(message)


def normalize_feed_id(feed_id: str | None) -> str:
    if not feed_id:
        return ""
    body = feed_id.strip().lower().removeprefix("0x")
    return f"0x{body}" if body else ""


def is_tracked_feed(feed_id: str | None) -> bool:
    normalized = normalize_feed_id(feed_id)
    return bool(normalized) and normalized != ZERO_FEED_ID


def _scaled(value: Any, expo: int) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"not an integer: {value!r}")
    return Decimal(int(value)).scaleb(expo)


def parse_price_feed(feed: dict[str, Any]) -> PriceRecord | None:
    """解析单个 feed；缺少 price 或字段非法时返回 None"""
    if not isinstance(feed, dict):
        return None
    quote = feed.get("price")
    if not isinstance(quote, dict):
        return None
    try:
        expo = int(quote.get("expo", 0))
        return PriceRecord(
            feed_id=normalize_feed_id(feed.get("id")),
            price=_scaled(quote["price"], expo),
            confidence=_scaled(quote.get("conf", 0), expo),
            expo=expo,
            publish_time=int(quote["publish_time"]),
        )
    except (KeyError, TypeError, ValueError, InvalidOperation):
        return None


@dataclass
class HermesClient:
    """Pyth Hermes HTTP 客户端"""

    base_url: str = "https://hermes.pyth.network"
    cache_ttl_ms: int = 700
    timeout_seconds: float = 10
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)
    _cache: dict[str, tuple[float, PriceRecord]] = field(default_factory=dict, repr=False)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def __aenter__(self) -> "HermesClient":
        self._get_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, ids: list[str]) -> Any:
        """发送批量价格请求"""
        session = self._get_session()
        url = f"{self.base_url.rstrip('/')}/api/latest_price_feeds"
        params = [("ids[]", feed_id) for feed_id in ids]

        try:
            response = await session.get(url, params=params)
            if response.status != 200:
                error_text = await response.text()
                raise HermesAPIError(response.status, f"Hermes error {response.status}: {error_text}")
            return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HermesAPIError(-1, f"Hermes request failed: {e}") from e

    async def _fetch_latest(self, ids: list[str]) -> dict[str, PriceRecord]:
        data = await self._request(ids)

        if isinstance(data, dict):
            feeds = [
                {"id": key, **value} if isinstance(value, dict) and "id" not in value else value
                for key, value in data.items()
            ]
        elif isinstance(data, list):
            feeds = data
        else:
            raise HermesAPIError(-1, "Invalid Hermes response")

        result: dict[str, PriceRecord] = {}
        for feed in feeds:
            record = parse_price_feed(feed)
            if record is None or not record.feed_id:
                continue
            result[record.feed_id] = record
        return result

    async def fetch_prices(self, ids: list[str]) -> dict[str, PriceRecord]:
        """获取一批 feed 的最新价格，响应中缺失的 feed 不出现在结果中"""
        unique_ids = list(dict.fromkeys(normalize_feed_id(i) for i in ids if is_tracked_feed(i)))
        if not unique_ids:
            return {}

        now = time.monotonic()
        ttl = self.cache_ttl_ms / 1000
        result: dict[str, PriceRecord] = {}
        missing: list[str] = []

        for feed_id in unique_ids:
            cached = self._cache.get(feed_id)
            if cached and now - cached[0] < ttl:
                result[feed_id] = cached[1]
            else:
                missing.append(feed_id)

        if missing:
            fresh = await self._fetch_latest(missing)
            fetched_at = time.monotonic()
            for feed_id, record in fresh.items():
                self._cache[feed_id] = (fetched_at, record)
                result[feed_id] = record

        return result
