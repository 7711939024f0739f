"""
测试用假实现：内存交易所客户端、故障缓存、K 线/行情构造函数
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from coin_ranker.models.market import CacheEntry, Candle, Ticker
from coin_ranker.services.cache_store import InMemoryCacheStore
from coin_ranker.services.errors import SymbolFetchFailed
from coin_ranker.services.interfaces import ExchangeClient

HOUR_MS = 3_600_000


def raw_klines(closes: Sequence[float], opens: Optional[Sequence[float]] = None) -> List[List[Any]]:
    """按币安 /klines 格式构造原始 K 线（数值为字符串）"""
    rows: List[List[Any]] = []
    for i, close in enumerate(closes):
        open_ = opens[i] if opens is not None else (closes[i - 1] if i > 0 else close)
        high = max(open_, close) + 1
        low = min(open_, close) - 1
        rows.append([
            i * HOUR_MS, str(open_), str(high), str(low), str(close), "100.0",
            (i + 1) * HOUR_MS - 1, "0", 10, "0", "0", "0",
        ])
    return rows


def candles(closes: Iterable[float]) -> List[Candle]:
    return [Candle(open=c, high=c, low=c, close=c, volume=1.0) for c in closes]


def ticker(symbol: str, price: float = 10.0, volume: float = 2_000_000, quote_volume: Optional[float] = None) -> Ticker:
    return Ticker(
        symbol=symbol,
        last_price=price,
        base_volume=volume,
        quote_volume=volume * price if quote_volume is None else quote_volume,
    )


class FakeExchange(ExchangeClient):
    """内存交易所，记录每次 K 线请求"""

    def __init__(
        self,
        tickers: Sequence[Ticker] = (),
        klines: Optional[Dict[str, List[List[Any]]]] = None,
        failing: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.tickers = list(tickers)
        self.klines = klines or {}
        self.failing = set(failing)
        self.delays = delays or {}
        self.ticker_error: Optional[Exception] = None
        self.candle_calls: List[tuple] = []
        self.closed = False

    async def get_all_tickers(self) -> List[Ticker]:
        if self.ticker_error is not None:
            raise self.ticker_error
        return list(self.tickers)

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[List[Any]]:
        self.candle_calls.append((symbol, interval, limit))
        if symbol in self.delays:
            await asyncio.sleep(self.delays[symbol])
        if symbol in self.failing:
            raise SymbolFetchFailed(symbol, "HTTP 500: upstream error")
        return list(self.klines.get(symbol, []))[-limit:]

    async def close(self) -> None:
        self.closed = True

    def calls_for(self, symbol: str) -> int:
        return sum(1 for call in self.candle_calls if call[0] == symbol)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class BrokenStore(InMemoryCacheStore):
    """读写时按开关抛出连接异常的缓存"""

    def __init__(self, fail_get: bool = False, fail_upsert: bool = False) -> None:
        super().__init__()
        self.fail_get = fail_get
        self.fail_upsert = fail_upsert

    async def get(self, symbol: str, interval: str) -> Optional[CacheEntry]:
        if self.fail_get:
            raise ConnectionError("cache unreachable")
        return await super().get(symbol, interval)

    async def upsert(self, symbol, interval, candles, timestamp, **kwargs) -> None:
        if self.fail_upsert:
            raise ConnectionError("cache unreachable")
        await super().upsert(symbol, interval, candles, timestamp, **kwargs)
