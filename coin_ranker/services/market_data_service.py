"""
行情排名服务 - 编排层

每次查询的流程:
FetchTickers → FilterPairs → RefreshCandles（并发）→ Rank → Respond

- 行情快照失败 → UpstreamUnavailable，整个查询失败
- 单个币种 K 线失败 → 记录日志并从结果中剔除，不影响其他币种
- 查询级超时 → 取消未完成的拉取任务，用已完成的数据排名
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from coin_ranker.config import get_config
from coin_ranker.models.market import Candle, RankedCoin, RankingResult, RefreshMode, Ticker
from coin_ranker.services.binance_client import BinanceClient
from coin_ranker.services.cache_store import create_cache_store
from coin_ranker.services.errors import SymbolFetchFailed, UpstreamUnavailable
from coin_ranker.services.interfaces import CacheStore, ExchangeClient
from coin_ranker.services.kline_cache import KlineCache
from coin_ranker.services.ranking_service import (
    MIN_OPPORTUNITY_CANDLES,
    MIN_VOLATILITY_CANDLES,
    RankingEngine,
)

logger = logging.getLogger(__name__)

KLINE_INTERVAL: str = "1h"


@dataclass(frozen=True)
class KlineWindow:
    """一次查询使用的 K 线参数"""
    interval: str
    limit: int


VOLATILITY_WINDOW = KlineWindow(KLINE_INTERVAL, MIN_VOLATILITY_CANDLES)
OPPORTUNITY_WINDOW = KlineWindow(KLINE_INTERVAL, MIN_OPPORTUNITY_CANDLES)
# RSI(6) 只需 7 根，30 根足够
RELIABLE_WINDOW = KlineWindow(KLINE_INTERVAL, 30)


class MarketDataService:
    """行情排名服务核心类"""

    def __init__(
        self,
        exchange: ExchangeClient,
        store: CacheStore,
        ranking: Optional[RankingEngine] = None,
        quote_asset: str = "USDT",
        freshness_window: timedelta = timedelta(minutes=5),
        max_concurrent_requests: int = 50,
        query_timeout: float = 60,
        clock: Optional[Callable] = None,
    ) -> None:
        self._exchange = exchange
        self._store = store
        self.quote_asset = quote_asset.upper()
        self.ranking = ranking or RankingEngine(quote_asset=self.quote_asset)
        cache_kwargs: Dict[str, Any] = {"quote_asset": self.quote_asset, "freshness_window": freshness_window}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self.kline_cache = KlineCache(exchange, store, **cache_kwargs)
        self.query_timeout = query_timeout
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_requests))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "MarketDataService":
        ranking = RankingEngine(
            quote_asset=config["quote_asset"],
            min_volume=config["min_volume"],
            rsi_period=config["rsi_period"],
            reliable_rsi_period=config["reliable_rsi_period"],
            reliable_limit=config["reliable_limit"],
            stablecoins=config["stablecoins"],
            asset_image_host=config["asset_image_host"],
        )
        return cls(
            exchange=BinanceClient(config),
            store=create_cache_store(config),
            ranking=ranking,
            quote_asset=config["quote_asset"],
            freshness_window=timedelta(seconds=config["cache_freshness_seconds"]),
            max_concurrent_requests=config["max_concurrent_requests"],
            query_timeout=config["query_timeout"],
        )

    async def start(self) -> None:
        await self._store.ensure_indexes()

    async def close(self) -> None:
        """关闭交易所会话与缓存连接"""
        await self._exchange.close()
        await self._store.close()
        logger.info("✅ 行情服务已关闭")

    # ── 流程步骤 ──────────────────────────────────────────────────────────

    async def _fetch_tickers(self) -> List[Ticker]:
        try:
            return await self._exchange.get_all_tickers()
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"获取24小时行情失败: {e}") from e

    def _filter_pairs(self, tickers: Sequence[Ticker]) -> List[Ticker]:
        """只保留以计价资产结尾的交易对"""
        return [
            t for t in tickers
            if t.symbol.endswith(self.quote_asset) and len(t.symbol) > len(self.quote_asset)
        ]

    async def _refresh_one(self, ticker: Ticker, window: KlineWindow) -> Tuple[Candle, ...]:
        async with self._semaphore:
            symbol = self.ranking.base_symbol(ticker)
            return await self.kline_cache.ensure_fresh(
                ticker.symbol,
                window.interval,
                window.limit,
                current_price=ticker.last_price,
                image_url=self.ranking.image_url(symbol),
            )

    async def _refresh_candles(self, pairs: Sequence[Ticker], window: KlineWindow) -> Dict[str, Sequence[Candle]]:
        """并发刷新 K 线；超时未完成的任务被取消，失败的币种被剔除"""
        if not pairs:
            return {}
        tasks: Dict[asyncio.Task, str] = {
            asyncio.create_task(self._refresh_one(t, window)): self.ranking.base_symbol(t)
            for t in pairs
        }
        try:
            done, pending = await asyncio.wait(tasks.keys(), timeout=self.query_timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"⚠️ K线刷新超时 {self.query_timeout}s，取消 {len(pending)} 个未完成任务")

        candles_by_symbol: Dict[str, Sequence[Candle]] = {}
        failed = 0
        for task in done:
            symbol = tasks[task]
            error = task.exception()
            if error is None:
                candles_by_symbol[symbol] = task.result()
                continue
            failed += 1
            if isinstance(error, SymbolFetchFailed):
                logger.warning(f"⚠️ {symbol} K线获取失败，跳过: {error.reason}")
            else:
                logger.error(f"❌ {symbol} K线处理异常，跳过: {error!r}")
        logger.info(f"📊 K线刷新完成: 成功 {len(candles_by_symbol)} / 失败 {failed} / 超时 {len(pending)}")
        return candles_by_symbol

    async def _read_cached_candles(self, pairs: Sequence[Ticker], window: KlineWindow) -> Dict[str, Sequence[Candle]]:
        """只读缓存（允许过期），不发起 K 线请求"""
        results = await asyncio.gather(
            *(self.kline_cache.read_cached(t.symbol, window.interval) for t in pairs),
            return_exceptions=True,
        )
        candles_by_symbol: Dict[str, Sequence[Candle]] = {}
        for ticker, result in zip(pairs, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️ {ticker.symbol} 读取缓存失败，跳过: {result}")
                continue
            if result:
                candles_by_symbol[self.ranking.base_symbol(ticker)] = result[-window.limit:]
        return candles_by_symbol

    async def _load_candles(self, pairs: Sequence[Ticker], window: KlineWindow, mode: RefreshMode) -> Dict[str, Sequence[Candle]]:
        if RefreshMode(mode) is RefreshMode.RANK_FROM_CACHE:
            return await self._read_cached_candles(pairs, window)
        return await self._refresh_candles(pairs, window)

    async def _prepare(self, window: KlineWindow, mode: RefreshMode) -> Tuple[List[Ticker], Dict[str, Sequence[Candle]]]:
        tickers = await self._fetch_tickers()
        pairs = self._filter_pairs(tickers)
        logger.info(f"📊 {self.quote_asset} 交易对: {len(pairs)} 个（共 {len(tickers)} 个）")
        candles = await self._load_candles(pairs, window, mode)
        return pairs, candles

    # ── 对外查询 ──────────────────────────────────────────────────────────

    async def list_reliable_coins(self, mode: RefreshMode = RefreshMode.REFRESH_THEN_RANK) -> RankingResult:
        """最多 100 个可靠币种（稳定币优先，其余按成交额），附带 RSI"""
        tickers = await self._fetch_tickers()
        selected = self.ranking.select_reliable(self._filter_pairs(tickers))
        candles = await self._load_candles(selected, RELIABLE_WINDOW, mode)
        coins: List[RankedCoin] = self.ranking.reliable_coins(selected, candles)
        logger.info(f"✅ 可靠币种: {len(coins)} 个")
        return RankingResult.of(coins)

    async def top_volatile(self, n: int = 20, mode: RefreshMode = RefreshMode.REFRESH_THEN_RANK) -> RankingResult:
        pairs, candles = await self._prepare(VOLATILITY_WINDOW, mode)
        return RankingResult.of(self.ranking.top_volatile(pairs, candles, n))

    async def top_buy_opportunities(self, n: int = 50, mode: RefreshMode = RefreshMode.REFRESH_THEN_RANK) -> RankingResult:
        pairs, candles = await self._prepare(OPPORTUNITY_WINDOW, mode)
        return RankingResult.of(self.ranking.buy_opportunities(pairs, candles, n))

    async def top_sell_opportunities(self, n: int = 50, mode: RefreshMode = RefreshMode.REFRESH_THEN_RANK) -> RankingResult:
        pairs, candles = await self._prepare(OPPORTUNITY_WINDOW, mode)
        return RankingResult.of(self.ranking.sell_opportunities(pairs, candles, n))


# ── 模块级单例 ────────────────────────────────────────────────────────────────

_service: Optional[MarketDataService] = None


async def get_market_data_service() -> MarketDataService:
    """获取行情服务单例"""
    global _service
    if _service is None:
        _service = MarketDataService.from_config(get_config())
    return _service


async def shutdown_market_data_service() -> None:
    global _service
    if _service is not None:
        await _service.close()
        _service = None
