"""
排名服务：波动率榜、买入候选榜、卖出候选榜、可靠币种列表

所有榜单的输入相同：24小时行情 + 按基础资产索引的 K 线序列。
K 线不足的币种直接跳过，不按 0 分参与排名。
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from coin_ranker.models.market import Candle, RankedCoin, Ticker, strip_quote_asset
from coin_ranker.services.indicator_service import calculate_rsi

logger = logging.getLogger(__name__)

CandlesBySymbol = Dict[str, Sequence[Candle]]

# 各榜单所需的最少 K 线根数（1h 周期）
MIN_VOLATILITY_CANDLES: int = 24
MIN_OPPORTUNITY_CANDLES: int = 200

DEFAULT_STABLECOINS: Tuple[str, ...] = ("USDT", "FDUSD", "USDC", "DAI", "BUSD")


def volatility(candles: Sequence[Candle]) -> float:
    """窗口内最大实体 |close - open|"""
    return max(abs(c.close - c.open) for c in candles)


class RankingEngine:
    """排名规则（过滤 + 排序 + 截断）"""

    def __init__(
        self,
        quote_asset: str = "USDT",
        min_volume: float = 1_000_000,
        buy_rsi_threshold: float = 40,
        sell_rsi_threshold: float = 60,
        rsi_period: int = 14,
        reliable_rsi_period: int = 6,
        reliable_limit: int = 100,
        stablecoins: Iterable[str] = DEFAULT_STABLECOINS,
        asset_image_host: str = "https://assets.binance.com/asset/public/i30",
    ) -> None:
        self.quote_asset = quote_asset.upper()
        self.min_volume = min_volume
        self.buy_rsi_threshold = buy_rsi_threshold
        self.sell_rsi_threshold = sell_rsi_threshold
        self.rsi_period = rsi_period
        self.reliable_rsi_period = reliable_rsi_period
        self.reliable_limit = reliable_limit
        self.stablecoins: Tuple[str, ...] = tuple(s.upper() for s in stablecoins)
        self.asset_image_host = asset_image_host.rstrip("/")

    def base_symbol(self, ticker: Ticker) -> str:
        return strip_quote_asset(ticker.symbol, self.quote_asset)

    def image_url(self, symbol: str) -> str:
        """图标地址按固定模板拼接，不检查是否存在"""
        return f"{self.asset_image_host}/{symbol.lower()}.png"

    @staticmethod
    def market_cap(ticker: Ticker) -> float:
        """近似市值 = 成交额 * 价格（忽略流通量）"""
        return ticker.quote_volume * ticker.last_price

    def _liquid(self, ticker: Ticker) -> bool:
        return ticker.base_volume > self.min_volume

    # ── 波动率榜 ──────────────────────────────────────────────────────────

    def top_volatile(self, tickers: Sequence[Ticker], candles_by_symbol: CandlesBySymbol, n: int = 20) -> List[RankedCoin]:
        scored: List[RankedCoin] = []
        for ticker in tickers:
            symbol = self.base_symbol(ticker)
            candles = candles_by_symbol.get(symbol)
            if not candles or len(candles) < MIN_VOLATILITY_CANDLES:
                continue
            if not self._liquid(ticker):
                continue
            scored.append(RankedCoin(
                symbol=symbol,
                current_price=ticker.last_price,
                volume=ticker.base_volume,
                rsi=calculate_rsi(candles, self.rsi_period),
                image_url=self.image_url(symbol),
                volatility=volatility(candles),
            ))
        scored.sort(key=lambda c: c.volatility, reverse=True)
        return scored[:max(n, 0)]

    # ── 买入 / 卖出候选榜 ─────────────────────────────────────────────────

    def _with_rsi(self, tickers: Sequence[Ticker], candles_by_symbol: CandlesBySymbol) -> List[RankedCoin]:
        """K 线足够、成交量达标且 RSI 可计算的候选"""
        candidates: List[RankedCoin] = []
        for ticker in tickers:
            symbol = self.base_symbol(ticker)
            candles = candles_by_symbol.get(symbol)
            if not candles or len(candles) < MIN_OPPORTUNITY_CANDLES:
                continue
            if not self._liquid(ticker):
                continue
            rsi = calculate_rsi(candles, self.rsi_period)
            if rsi is None:
                continue
            candidates.append(RankedCoin(
                symbol=symbol,
                current_price=ticker.last_price,
                volume=ticker.base_volume,
                rsi=rsi,
                image_url=self.image_url(symbol),
                market_cap=self.market_cap(ticker),
            ))
        return candidates

    def buy_opportunities(self, tickers: Sequence[Ticker], candles_by_symbol: CandlesBySymbol, n: int = 50) -> List[RankedCoin]:
        """RSI < 买入阈值，RSI 升序，同值按成交量降序"""
        oversold = [c for c in self._with_rsi(tickers, candles_by_symbol) if c.rsi < self.buy_rsi_threshold]
        oversold.sort(key=lambda c: (c.rsi, -c.volume))
        return oversold[:max(n, 0)]

    def sell_opportunities(self, tickers: Sequence[Ticker], candles_by_symbol: CandlesBySymbol, n: int = 50) -> List[RankedCoin]:
        """RSI > 卖出阈值，RSI 降序，同值按成交量降序"""
        overbought = [c for c in self._with_rsi(tickers, candles_by_symbol) if c.rsi > self.sell_rsi_threshold]
        overbought.sort(key=lambda c: (-c.rsi, -c.volume))
        return overbought[:max(n, 0)]

    # ── 可靠币种列表 ──────────────────────────────────────────────────────

    def select_reliable(self, tickers: Sequence[Ticker]) -> List[Ticker]:
        """稳定币按固定优先级排在最前，其余按成交额降序，最多 reliable_limit 个"""
        by_symbol: Dict[str, Ticker] = {}
        for ticker in tickers:
            by_symbol.setdefault(self.base_symbol(ticker), ticker)

        selected: List[Ticker] = []
        added: set = set()
        for stablecoin in self.stablecoins:
            ticker = by_symbol.get(stablecoin)
            if ticker is not None and stablecoin not in added:
                selected.append(ticker)
                added.add(stablecoin)

        for symbol, ticker in sorted(by_symbol.items(), key=lambda item: item[1].quote_volume, reverse=True):
            if len(selected) >= self.reliable_limit:
                break
            if symbol not in added:
                selected.append(ticker)
                added.add(symbol)
        return selected[:self.reliable_limit]

    def reliable_coins(self, selected: Sequence[Ticker], candles_by_symbol: CandlesBySymbol) -> List[RankedCoin]:
        """为已选币种附加 RSI（仅展示用，None 也是有效值）"""
        coins: List[RankedCoin] = []
        for ticker in selected:
            symbol = self.base_symbol(ticker)
            candles: Optional[Sequence[Candle]] = candles_by_symbol.get(symbol)
            coins.append(RankedCoin(
                symbol=symbol,
                current_price=ticker.last_price,
                volume=ticker.base_volume,
                rsi=calculate_rsi(candles, self.reliable_rsi_period) if candles else None,
                image_url=self.image_url(symbol),
                trade_volume=ticker.quote_volume,
            ))
        return coins
