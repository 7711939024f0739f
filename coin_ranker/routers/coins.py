"""
币种排名路由
"""
import logging
from typing import Awaitable

from fastapi import APIRouter, HTTPException, Query

from coin_ranker.models.market import RankingResult, RefreshMode
from coin_ranker.models.schemas import RankedCoinResponse, RankingResponse
from coin_ranker.services.errors import UpstreamUnavailable
from coin_ranker.services.market_data_service import get_market_data_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["币种排名"])


def _mode(refresh: bool) -> RefreshMode:
    return RefreshMode.REFRESH_THEN_RANK if refresh else RefreshMode.RANK_FROM_CACHE


async def _respond(query: Awaitable[RankingResult], message: str) -> RankingResponse:
    try:
        result = await query
    except UpstreamUnavailable as e:
        logger.error(f"❌ 行情服务不可用: {e}")
        raise HTTPException(status_code=503, detail=f"行情服务暂不可用: {e}")

    return RankingResponse(
        message=message if result.available else "暂无符合条件的币种",
        count=result.count,
        data=[RankedCoinResponse(**coin.to_dict()) for coin in result.items],
    )


@router.get("/list-reliable-coins", response_model=RankingResponse)
async def list_reliable_coins(refresh: bool = Query(True, description="是否先刷新K线")) -> RankingResponse:
    """最多 100 个可靠币种，稳定币优先，附带 RSI"""
    service = await get_market_data_service()
    return await _respond(service.list_reliable_coins(mode=_mode(refresh)), "可靠币种列表")


@router.get("/top-volatile", response_model=RankingResponse)
async def top_volatile(
    n: int = Query(20, ge=1, le=500, description="返回数量"),
    refresh: bool = Query(True, description="是否先刷新K线"),
) -> RankingResponse:
    """波动率最高的币种"""
    service = await get_market_data_service()
    return await _respond(service.top_volatile(n, mode=_mode(refresh)), f"波动率前 {n} 的币种")


@router.get("/buy-opportunities", response_model=RankingResponse)
async def buy_opportunities(
    n: int = Query(50, ge=1, le=500, description="返回数量"),
    refresh: bool = Query(True, description="是否先刷新K线"),
) -> RankingResponse:
    """RSI 超卖的买入候选"""
    service = await get_market_data_service()
    return await _respond(service.top_buy_opportunities(n, mode=_mode(refresh)), "买入候选")


@router.get("/sell-opportunities", response_model=RankingResponse)
async def sell_opportunities(
    n: int = Query(50, ge=1, le=500, description="返回数量"),
    refresh: bool = Query(True, description="是否先刷新K线"),
) -> RankingResponse:
    """RSI 超买的卖出候选"""
    service = await get_market_data_service()
    return await _respond(service.top_sell_opportunities(n, mode=_mode(refresh)), "卖出候选")
