"""
币安现货 REST 客户端
- /api/v3/ticker/24hr：全市场24小时行情
- /api/v3/klines：单个交易对 K 线
Session 复用 + 有限次重试
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from coin_ranker.config import get_config
from coin_ranker.models.market import Ticker
from coin_ranker.services.errors import SymbolFetchFailed, UpstreamUnavailable
from coin_ranker.services.interfaces import ExchangeClient

logger = logging.getLogger(__name__)


class _HttpStatusError(Exception):
    def __init__(self, status: int, text: str):
        self.status = status
        super().__init__(f"HTTP {status}: {text[:200]}")

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class BinanceClient(ExchangeClient):
    """币安API客户端"""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        config = config or get_config()
        self.api_url: str = config["binance_api_url"].rstrip("/")
        self.request_timeout: float = config["request_timeout"]
        self.retry_attempts: int = max(1, int(config["retry_attempts"]))
        self.retry_delay: float = config["retry_delay"]
        self.connection_limit: int = int(config["max_concurrent_requests"])
        self._session: Optional[aiohttp.ClientSession] = None

    # ── Session 管理 ──────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建 HTTP 会话（复用连接池）"""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.connection_limit, limit_per_host=self.connection_limit)
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout, trust_env=True)
        return self._session

    async def close(self) -> None:
        """关闭 HTTP 会话，释放资源"""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET 请求并解析 JSON，网络错误、429 和 5xx 会重试"""
        url = f"{self.api_url}{path}"
        last_error: Optional[Exception] = None
        for attempt in range(self.retry_attempts):
            try:
                session = await self._get_session()
                async with session.get(url, params=params) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise _HttpStatusError(response.status, text)
                    return await response.json(content_type=None)
            except _HttpStatusError as e:
                last_error = e
                if not e.retryable:
                    break
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.retry_delay)
        raise last_error

    # ── 数据获取 ──────────────────────────────────────────────────────────

    async def get_all_tickers(self) -> List[Ticker]:
        """从币安获取所有交易对的24小时行情数据

        Raises:
            UpstreamUnavailable: 请求失败或返回结构不是列表
        """
        try:
            data = await self._get_json("/api/v3/ticker/24hr")
        except Exception as e:
            raise UpstreamUnavailable(f"获取24小时行情失败: {e}") from e
        if not isinstance(data, list):
            raise UpstreamUnavailable(f"24小时行情格式异常: {type(data).__name__}")

        tickers: List[Ticker] = []
        for raw in data:
            try:
                tickers.append(Ticker.from_raw(raw))
            except ValueError:
                logger.debug(f"跳过无效行情: {raw!r}")
        logger.info(f"📊 获取行情 {len(tickers)} 个交易对")
        return tickers

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[List[Any]]:
        """获取指定交易对的最近 K 线数据

        Raises:
            SymbolFetchFailed: 请求失败
        """
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        try:
            return await self._get_json("/api/v3/klines", params=params)
        except Exception as e:
            raise SymbolFetchFailed(symbol, f"获取K线失败: {e}") from e
