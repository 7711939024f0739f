"""
外部协作方接口：交易所客户端与缓存存储
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Sequence

from coin_ranker.models.market import CacheEntry, Candle, Ticker


class ExchangeClient(ABC):
    """交易所行情客户端

    任何满足该接口的实现都可以替换币安 REST 客户端（测试中使用内存假实现）。
    """

    @abstractmethod
    async def get_all_tickers(self) -> List[Ticker]:
        """获取全部交易对的24小时行情快照"""

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[List[Any]]:
        """获取单个交易对的原始 K 线数组，最旧在前

        每根K线格式: [open_time, open, high, low, close, volume, ...]
        """

    async def close(self) -> None:
        """释放连接资源"""


class CacheStore(ABC):
    """K 线缓存存储，按 (symbol, interval) 唯一"""

    @abstractmethod
    async def get(self, symbol: str, interval: str) -> Optional[CacheEntry]:
        """读取缓存条目，不存在时返回 None"""

    @abstractmethod
    async def upsert(
        self,
        symbol: str,
        interval: str,
        candles: Sequence[Candle],
        timestamp: datetime,
        current_price: Optional[float] = None,
        image_url: Optional[str] = None,
        fetched_limit: Optional[int] = None,
    ) -> None:
        """写入缓存条目，已存在时整体替换（后写入者生效）

        fetched_limit 为本次向交易所请求的根数，用于判断历史不足的交易对是否已拉全。
        """

    async def ensure_indexes(self) -> None:
        """启动时准备存储结构，默认无需操作"""

    async def close(self) -> None:
        """释放连接资源"""
