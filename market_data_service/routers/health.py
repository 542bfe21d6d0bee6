"""健康检查路由"""

import time

from fastapi import APIRouter, Depends

from market_data_service import __version__
from market_data_service.container import ServiceContainer
from market_data_service.dependencies import get_container

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """服务健康检查"""
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "TradingAgents MarketDataService",
            "source": container.source.name,
            "caches": {
                "series": container.series_cache.stats(),
                "file": container.result_cache.stats(),
            },
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
