"""
编排层测试：端到端场景、失败隔离、超时取消、只读缓存模式
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from coin_ranker.models.market import RefreshMode
from coin_ranker.services.cache_store import InMemoryCacheStore
from coin_ranker.services.errors import UpstreamUnavailable
from coin_ranker.services.kline_cache import normalize_klines
from coin_ranker.services.market_data_service import MarketDataService
from fakes import BrokenStore, FakeClock, FakeExchange, raw_klines, ticker

RISING_25 = raw_klines([100 + i for i in range(25)])
FALLING_200 = raw_klines([1000 - i for i in range(200)])
RISING_200 = raw_klines([100 + i for i in range(200)])


def _service(exchange, store=None, clock=None, query_timeout=5.0):
    return MarketDataService(
        exchange,
        InMemoryCacheStore() if store is None else store,
        quote_asset="USDT",
        freshness_window=timedelta(minutes=5),
        max_concurrent_requests=10,
        query_timeout=query_timeout,
        clock=clock or FakeClock(),
    )


class TestTopVolatile:
    def test_volume_filter_end_to_end(self):
        exchange = FakeExchange(
            tickers=[ticker("BTCUSDT", volume=2_000_000), ticker("ETHUSDT", volume=500_000)],
            klines={"BTCUSDT": RISING_25, "ETHUSDT": RISING_25},
        )
        result = asyncio.run(_service(exchange).top_volatile(20))
        assert result.count == 1
        assert [c.symbol for c in result.items] == ["BTC"]
        assert result.items[0].volatility == pytest.approx(1.0)
        assert ("BTCUSDT", "1h", 24) in exchange.candle_calls

    def test_non_quote_pairs_are_ignored(self):
        exchange = FakeExchange(
            tickers=[ticker("BTCUSDT"), ticker("ETHBTC"), ticker("USDT")],
            klines={"BTCUSDT": RISING_25, "ETHBTC": RISING_25},
        )
        result = asyncio.run(_service(exchange).top_volatile())
        assert [c.symbol for c in result.items] == ["BTC"]
        assert exchange.calls_for("ETHBTC") == 0

    def test_empty_result_is_not_an_error(self):
        exchange = FakeExchange(tickers=[ticker("ETHUSDT", volume=10)], klines={"ETHUSDT": RISING_25})
        result = asyncio.run(_service(exchange).top_volatile())
        assert result.count == 0
        assert not result.available


class TestFailureIsolation:
    def test_failing_symbol_is_omitted_everywhere(self):
        exchange = FakeExchange(
            tickers=[ticker("BTCUSDT"), ticker("BADUSDT"), ticker("UPUSDT")],
            klines={"BTCUSDT": FALLING_200, "UPUSDT": RISING_200, "BADUSDT": FALLING_200},
            failing={"BADUSDT"},
        )
        service = _service(exchange)

        async def run():
            return (
                await service.top_volatile(),
                await service.top_buy_opportunities(),
                await service.top_sell_opportunities(),
            )

        volatile, buy, sell = asyncio.run(run())
        assert [c.symbol for c in buy.items] == ["BTC"]
        assert [c.symbol for c in sell.items] == ["UP"]
        for result in (volatile, buy, sell):
            assert "BAD" not in {c.symbol for c in result.items}

    def test_malformed_and_empty_payloads_are_skipped(self):
        broken = raw_klines([1.0] * 24)
        broken[3][1] = "oops"
        exchange = FakeExchange(
            tickers=[ticker("BTCUSDT"), ticker("BROKENUSDT"), ticker("EMPTYUSDT")],
            klines={"BTCUSDT": RISING_25, "BROKENUSDT": broken},
        )
        result = asyncio.run(_service(exchange).top_volatile())
        assert [c.symbol for c in result.items] == ["BTC"]

    def test_ticker_failure_is_upstream_unavailable(self):
        exchange = FakeExchange()
        exchange.ticker_error = ConnectionError("dns failure")
        with pytest.raises(UpstreamUnavailable):
            asyncio.run(_service(exchange).top_buy_opportunities())

    def test_cache_store_outage_does_not_drop_fetched_candles(self):
        exchange = FakeExchange(tickers=[ticker("BTCUSDT")], klines={"BTCUSDT": RISING_25})
        store = BrokenStore(fail_get=True, fail_upsert=True)
        result = asyncio.run(_service(exchange, store=store).top_volatile())
        assert [c.symbol for c in result.items] == ["BTC"]

    def test_slow_symbol_is_cancelled_at_query_timeout(self):
        exchange = FakeExchange(
            tickers=[ticker("BTCUSDT"), ticker("SLOWUSDT")],
            klines={"BTCUSDT": RISING_25, "SLOWUSDT": RISING_25},
            delays={"SLOWUSDT": 30},
        )
        store = InMemoryCacheStore()
        result = asyncio.run(_service(exchange, store=store, query_timeout=0.2).top_volatile())
        assert [c.symbol for c in result.items] == ["BTC"]
        assert asyncio.run(store.get("SLOW", "1h")) is None


class TestRefreshModes:
    def test_cache_mode_uses_stale_entries_without_fetching(self):
        store = InMemoryCacheStore()
        clock = FakeClock()
        exchange = FakeExchange(tickers=[ticker("BTCUSDT"), ticker("ETHUSDT")])

        async def run():
            old = clock() - timedelta(hours=6)
            await store.upsert("BTC", "1h", normalize_klines("BTCUSDT", RISING_25), old)
            return await _service(exchange, store=store, clock=clock).top_volatile(mode=RefreshMode.RANK_FROM_CACHE)

        result = asyncio.run(run())
        assert [c.symbol for c in result.items] == ["BTC"]
        assert exchange.candle_calls == []

    def test_refresh_mode_reuses_fresh_cache_across_queries(self):
        exchange = FakeExchange(tickers=[ticker("UPUSDT")], klines={"UPUSDT": RISING_200})
        service = _service(exchange)

        async def run():
            await service.top_sell_opportunities()
            await service.top_buy_opportunities()
            await service.top_volatile()

        asyncio.run(run())
        assert exchange.calls_for("UPUSDT") == 1

    def test_start_prepares_any_store(self):
        store = InMemoryCacheStore()
        store.ensure_indexes = AsyncMock()
        asyncio.run(_service(FakeExchange(), store=store).start())
        store.ensure_indexes.assert_awaited_once_with()

    def test_start_with_memory_store_is_a_no_op(self):
        asyncio.run(_service(FakeExchange()).start())

    def test_close_releases_exchange(self):
        exchange = FakeExchange()
        asyncio.run(_service(exchange).close())
        assert exchange.closed


class TestReliableCoins:
    def test_stablecoins_first_and_rsi_optional(self):
        tickers = [ticker(f"C{i}USDT", quote_volume=1e9 - i) for i in range(120)]
        tickers += [ticker("USDCUSDT", quote_volume=1.0), ticker("FDUSDUSDT", quote_volume=2.0)]
        exchange = FakeExchange(
            tickers=tickers,
            klines={"C0USDT": raw_klines([1, 2, 3, 4, 5, 6, 7])},
        )
        result = asyncio.run(_service(exchange).list_reliable_coins())
        symbols = [c.symbol for c in result.items]
        assert result.count == 100
        assert symbols[:3] == ["FDUSD", "USDC", "C0"]
        assert result.items[2].rsi == pytest.approx(100 - 100 / 201)
        assert result.items[3].rsi is None
        assert exchange.calls_for("C119USDT") == 0
