"""
K 线缓存存储
- InMemoryCacheStore：进程内字典，默认后端
- MongoCacheStore：MongoDB 持久化，每个 (symbol, interval) 一条文档
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient

from coin_ranker.models.market import CacheEntry, CacheKey, Candle
from coin_ranker.services.interfaces import CacheStore

logger = logging.getLogger(__name__)


class InMemoryCacheStore(CacheStore):
    """内存缓存，upsert 整体替换条目（后写入者生效）"""

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CacheEntry] = {}

    async def get(self, symbol: str, interval: str) -> Optional[CacheEntry]:
        return self._entries.get(CacheKey.of(symbol, interval))

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
        key = CacheKey.of(symbol, interval)
        self._entries[key] = CacheEntry(
            key=key,
            candles=tuple(candles),
            last_updated=timestamp,
            current_price=current_price,
            image_url=image_url,
            fetched_limit=fetched_limit,
        )

    def __len__(self) -> int:
        return len(self._entries)


class MongoCacheStore(CacheStore):
    """MongoDB 缓存

    文档结构: {symbol, interval, klines, lastUpdated, currentPrice, imageUrl, fetchedLimit}
    (symbol, interval) 上建唯一索引
    """

    def __init__(self, collection: Any, client: Optional[AsyncIOMotorClient] = None) -> None:
        self._collection = collection
        self._client = client

    @classmethod
    def from_uri(cls, uri: str, database: str, collection: str = "klines") -> "MongoCacheStore":
        client = AsyncIOMotorClient(uri, tz_aware=True)
        return cls(client[database][collection], client=client)

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("symbol", 1), ("interval", 1)], unique=True)
        logger.info("✅ K线缓存索引已就绪")

    @staticmethod
    def _to_entry(doc: Dict[str, Any]) -> CacheEntry:
        last_updated: datetime = doc["lastUpdated"]
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return CacheEntry(
            key=CacheKey.of(doc["symbol"], doc["interval"]),
            candles=tuple(Candle(**k) for k in doc.get("klines", [])),
            last_updated=last_updated,
            current_price=doc.get("currentPrice"),
            image_url=doc.get("imageUrl"),
            fetched_limit=doc.get("fetchedLimit"),
        )

    async def get(self, symbol: str, interval: str) -> Optional[CacheEntry]:
        key = CacheKey.of(symbol, interval)
        doc = await self._collection.find_one({"symbol": key.symbol, "interval": key.interval})
        if doc is None:
            return None
        return self._to_entry(doc)

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
        key = CacheKey.of(symbol, interval)
        document: Dict[str, Any] = {
            "symbol": key.symbol,
            "interval": key.interval,
            "klines": [
                {"open": c.open, "high": c.high, "low": c.low, "close": c.close, "volume": c.volume}
                for c in candles
            ],
            "lastUpdated": timestamp,
        }
        if current_price is not None:
            document["currentPrice"] = current_price
        if image_url is not None:
            document["imageUrl"] = image_url
        if fetched_limit is not None:
            document["fetchedLimit"] = fetched_limit
        # 整体替换文档，上次写入的字段不会残留
        await self._collection.replace_one(
            {"symbol": key.symbol, "interval": key.interval},
            document,
            upsert=True,
        )

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("MongoDB 连接已关闭")


def create_cache_store(config: Dict[str, Any]) -> CacheStore:
    """根据 cache_backend 配置创建缓存存储"""
    backend = str(config.get("cache_backend", "memory")).lower()
    if backend == "mongodb":
        logger.info(f"📦 使用 MongoDB 缓存: {config['mongodb_database']}")
        return MongoCacheStore.from_uri(config["mongodb_uri"], config["mongodb_database"])
    if backend != "memory":
        logger.warning(f"⚠️ 未知的缓存后端 {backend}，使用内存缓存")
    return InMemoryCacheStore()
