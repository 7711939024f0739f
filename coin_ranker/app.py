"""
币安币种排名API服务
主应用入口
"""
import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coin_ranker.models.schemas import HealthResponse
from coin_ranker.routers import coins
from coin_ranker.services.market_data_service import get_market_data_service, shutdown_market_data_service

# 配置日志 - 只输出到控制台
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# 创建FastAPI应用
app = FastAPI(
    title="币安币种排名API",
    description="K线缓存 + RSI 的币种波动率 / 买卖候选排名服务",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# 添加CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(coins.router)


# 生命周期事件
@app.on_event("startup")
async def startup_event():
    """启动时初始化行情服务"""
    service = await get_market_data_service()
    await service.start()
    logger.info("🚀 行情服务已就绪")


@app.on_event("shutdown")
async def shutdown_event():
    """关闭时释放行情服务资源"""
    await shutdown_market_data_service()


# 基础路由
@app.get("/", response_model=HealthResponse)
async def root():
    """根路径健康检查"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        version=VERSION
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """健康检查端点"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        version=VERSION
    )
