"""
行情领域数据结构：K线、缓存条目、24小时行情、排名结果
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Candle:
    """单根K线（OHLCV）"""
    open: float
    high: float
    low: float
    close: float
    volume: float


def strip_quote_asset(pair: str, quote_asset: str) -> str:
    """BTCUSDT -> BTC；只去掉末尾的计价资产"""
    pair = pair.upper()
    quote_asset = quote_asset.upper()
    if quote_asset and pair.endswith(quote_asset):
        return pair[: -len(quote_asset)]
    return pair


@dataclass(frozen=True)
class CacheKey:
    """缓存键：(基础资产大写, 周期小写)"""
    symbol: str
    interval: str

    @classmethod
    def of(cls, symbol: str, interval: str) -> "CacheKey":
        return cls(symbol=symbol.upper(), interval=interval.lower())

    @classmethod
    def from_pair(cls, pair: str, interval: str, quote_asset: str) -> "CacheKey":
        return cls.of(strip_quote_asset(pair, quote_asset), interval)


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目，每次刷新整体替换，不做原地修改"""
    key: CacheKey
    candles: Tuple[Candle, ...]
    last_updated: datetime
    current_price: Optional[float] = None
    image_url: Optional[str] = None
    fetched_limit: Optional[int] = None

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        return now - self.last_updated < window

    def covers(self, limit: int) -> bool:
        """缓存的 K 线是否满足 limit 根的请求

        上次拉取返回的根数少于请求根数时，说明交易所只有这么多历史（新上线交易对），
        再次请求也不会更多。
        """
        if len(self.candles) >= limit:
            return True
        return self.fetched_limit is not None and len(self.candles) < self.fetched_limit


@dataclass(frozen=True)
class Ticker:
    """24小时行情快照（每次查询重新获取，不缓存）"""
    symbol: str
    last_price: float
    base_volume: float
    quote_volume: float

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "Ticker":
        """解析币安 /ticker/24hr 返回的单个元素

        Raises:
            ValueError: 字段缺失或数值无法解析
        """
        try:
            return cls(
                symbol=str(raw["symbol"]).upper(),
                last_price=float(raw["lastPrice"]),
                base_volume=float(raw["volume"]),
                quote_volume=float(raw["quoteVolume"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"无效的行情数据: {raw!r}") from e


@dataclass(frozen=True)
class RankedCoin:
    """排名输出记录

    market_cap 为 quote_volume * current_price 的近似值，
    未考虑流通量，不是真实市值。
    """
    symbol: str
    current_price: float
    volume: float
    rsi: Optional[float]
    image_url: str
    volatility: Optional[float] = None
    market_cap: Optional[float] = None
    trade_volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RankingResult:
    items: List[RankedCoin]
    count: int

    @classmethod
    def of(cls, items: List[RankedCoin]) -> "RankingResult":
        return cls(items=list(items), count=len(items))

    @property
    def available(self) -> bool:
        return self.count > 0


class RefreshMode(str, Enum):
    """查询模式：先刷新再排名 / 直接使用现有缓存排名"""
    REFRESH_THEN_RANK = "refresh_then_rank"
    RANK_FROM_CACHE = "rank_from_cache"
