"""
请求和响应数据模型
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class RankedCoinResponse(BaseModel):
    """单个币种的排名结果"""
    symbol: str = Field(..., description="基础资产符号，如 BTC（已去掉计价资产后缀）")
    current_price: float = Field(..., description="最新成交价")
    volume: float = Field(..., description="24小时成交量（基础资产）")
    rsi: Optional[float] = Field(None, description="RSI，K线不足时为空")
    image_url: str = Field(..., description="币种图标地址")
    volatility: Optional[float] = Field(None, description="窗口内最大实体 |close - open|")
    market_cap: Optional[float] = Field(None, description="近似市值 = quoteVolume * 价格，非真实市值")
    trade_volume: Optional[float] = Field(None, description="24小时成交额（计价资产）")


class RankingResponse(BaseModel):
    """排名接口响应模型"""
    message: str = Field(..., description="结果说明")
    count: int = Field(..., description="返回的币种数量")
    data: List[RankedCoinResponse] = Field(default_factory=list, description="排序后的币种列表")


class HealthResponse(BaseModel):
    """健康检查响应模型"""
    status: str
    timestamp: str
    version: str
