"""
TradingAgents-CN 行情数据与技术指标服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn market_data_service.main:app --host 0.0.0.0 --port 8001
    python -m market_data_service.main
"""

import logging
import os
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from market_data_service import __version__
from market_data_service.config import get_settings
from market_data_service.container import build_container
from market_data_service.routers import cache, health, market, technical

settings = get_settings()

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动时装配服务容器，关闭时等待 CSV 落盘完成"""
    logger.info("=" * 60)
    logger.info(f"🚀 TradingAgents-CN MarketDataService v{__version__} 启动中")
    logger.info(f"   数据源    : {settings.MARKET_DATA_SOURCE}")
    logger.info(f"   缓存目录  : {os.path.abspath(settings.CACHE_DIR)}")
    logger.info(f"   数据目录  : {os.path.abspath(settings.DATA_DIR)}")
    logger.info(
        f"   重试策略  : 最多 {settings.RETRY_MAX_RETRIES} 次, "
        f"基础间隔 {settings.RETRY_BASE_DELAY}s, 上限 {settings.RETRY_MAX_DELAY}s"
    )
    logger.info("=" * 60)

    container = build_container(settings)
    app.state.container = container

    yield

    logger.info("🔄 行情数据服务正在关闭...")
    await container.shutdown()
    logger.info("✅ 行情数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="TradingAgents-CN 行情数据服务",
    description=(
        "行情数据获取与技术指标计算微服务：\n"
        "- 🌐 行情数据源（yfinance / AKShare / Tushare），带指数退避重试与限流\n"
        "- 🗄️ 两级行情缓存（内存 → CSV）与 JSON 文件结果缓存\n"
        "- 📈 技术指标（SMA / EMA / RSI / MACD / BOLL / ATR / VWMA / MFI）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 从数据源拉取原始日线（重试 + 限流）\n"
        "Cache Layer        ← 内存 / CSV / JSON 文件缓存\n"
        "Processing Layer   ← 数据清洗、排序、去重\n"
        "Analysis Layer     ← 技术指标计算\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(market.router)
app.include_router(technical.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "TradingAgents-CN MarketDataService",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "market_data_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
