"""
K 线缓存：命中新鲜缓存直接返回，否则向交易所拉取并整体替换缓存条目

新鲜度判断: now - last_updated < freshness_window
同一 key 的并发刷新不在这一层去重，由编排层保证每个查询周期每个 key 只调用一次。
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

import pandas as pd

from coin_ranker.models.market import CacheEntry, CacheKey, Candle
from coin_ranker.services.errors import MalformedPayload, NoDataAvailable, SymbolFetchFailed
from coin_ranker.services.interfaces import CacheStore, ExchangeClient

logger = logging.getLogger(__name__)

KLINE_COLUMNS: List[str] = [
    'timestamp', 'open', 'high', 'low', 'close', 'volume',
    'close_time', 'quote_volume', 'trades', 'taker_buy_base',
    'taker_buy_quote', 'ignore',
]
OHLCV_COLUMNS: List[str] = ['open', 'high', 'low', 'close', 'volume']


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_klines(symbol: str, raw: Any) -> Tuple[Candle, ...]:
    """把币安原始 K 线数组转换为 Candle 序列（最旧在前）

    任意一根 K 线解析失败都会使整批数据作废。

    Raises:
        NoDataAvailable: 空列表
        MalformedPayload: 结构或数值无效
    """
    if not isinstance(raw, list):
        raise MalformedPayload(symbol, f"K线数据不是列表: {type(raw).__name__}")
    if not raw:
        raise NoDataAvailable(symbol, "未返回K线数据")
    if any(not isinstance(row, (list, tuple)) or len(row) < len(OHLCV_COLUMNS) + 1 for row in raw):
        raise MalformedPayload(symbol, "K线字段数量不足")

    df = pd.DataFrame([list(row[:len(OHLCV_COLUMNS) + 1]) for row in raw], columns=KLINE_COLUMNS[:6])
    try:
        for col in OHLCV_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors='raise').astype('float64')
    except (ValueError, TypeError) as e:
        raise MalformedPayload(symbol, f"K线数值解析失败: {e}") from e
    if df[OHLCV_COLUMNS].isna().any().any():
        raise MalformedPayload(symbol, "K线包含空值")

    return tuple(
        Candle(open=o, high=h, low=l, close=c, volume=v)
        for o, h, l, c, v in df[OHLCV_COLUMNS].itertuples(index=False, name=None)
    )


class KlineCache:
    """按 (symbol, interval) 缓存 K 线序列"""

    def __init__(
        self,
        exchange: ExchangeClient,
        store: CacheStore,
        quote_asset: str = "USDT",
        freshness_window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._exchange = exchange
        self._store = store
        self.quote_asset = quote_asset.upper()
        self.freshness_window = freshness_window
        self._clock = clock

    def key_for(self, pair: str, interval: str) -> CacheKey:
        return CacheKey.from_pair(pair, interval, self.quote_asset)

    async def ensure_fresh(
        self,
        pair: str,
        interval: str,
        limit: int,
        current_price: Optional[float] = None,
        image_url: Optional[str] = None,
    ) -> Tuple[Candle, ...]:
        """返回最新的 limit 根 K 线，必要时向交易所刷新

        缓存新鲜且根数足够（或上次拉取已取到该交易对的全部历史）时不发起网络请求；
        否则拉取、标准化并整体替换缓存条目。拉取失败时现有缓存保持不变。
        缓存读写异常只记录警告，不影响本次返回。

        Args:
            pair: 交易对符号，如 BTCUSDT
            interval: K线周期，如 1h
            limit: K线根数

        Returns:
            K线序列，最旧在前

        Raises:
            SymbolFetchFailed: 临时性拉取失败（NoDataAvailable / MalformedPayload 为其子类）
        """
        key = self.key_for(pair, interval)
        entry = await self._safe_get(key)
        if (
            entry is not None
            and entry.is_fresh(self._clock(), self.freshness_window)
            and entry.covers(limit)
        ):
            return entry.candles[-limit:]

        try:
            raw = await self._exchange.get_candles(pair.upper(), key.interval, limit)
        except SymbolFetchFailed:
            raise
        except Exception as e:
            raise SymbolFetchFailed(pair, f"获取K线失败: {e}") from e

        candles = normalize_klines(pair, raw)
        try:
            await self._store.upsert(
                key.symbol,
                key.interval,
                candles,
                self._clock(),
                current_price=current_price,
                image_url=image_url,
                fetched_limit=limit,
            )
        except Exception as e:
            # 已拉取的数据仍然可用，只是本次没有写入缓存
            logger.warning(f"⚠️ {key.symbol} {key.interval} 写入缓存失败: {e}")
        else:
            logger.debug(f"K线已刷新: {key.symbol} {key.interval} ({len(candles)} 根)")
        return candles

    async def _safe_get(self, key: CacheKey) -> Optional[CacheEntry]:
        """读取缓存，存储异常按未命中处理"""
        try:
            return await self._store.get(key.symbol, key.interval)
        except Exception as e:
            logger.warning(f"⚠️ {key.symbol} {key.interval} 读取缓存失败，按未命中处理: {e}")
            return None

    async def read_cached(self, pair: str, interval: str) -> Optional[Tuple[Candle, ...]]:
        """只读缓存，不论是否过期，不发起网络请求"""
        entry = await self._safe_get(self.key_for(pair, interval))
        if entry is None:
            return None
        return entry.candles
