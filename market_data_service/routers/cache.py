"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清空内存层 / 删除指定文件缓存条目
POST /api/cache/cleanup   - 按时间清理过期文件
"""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from market_data_service.container import ServiceContainer
from market_data_service.dependencies import get_container
from market_data_service.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    memory: bool = True
    namespace: Optional[str] = None
    method: Optional[str] = None
    params: Optional[Any] = None


class CleanupRequest(BaseModel):
    max_age_seconds: float = Field(default=86400, gt=0)


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(container: ServiceContainer = Depends(get_container)):
    """获取缓存统计信息（内存层、CSV 层、文件缓存）"""
    return ApiResponse.ok(data={
        "series": container.series_cache.stats(),
        "file": container.result_cache.stats(),
    })


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest, container: ServiceContainer = Depends(get_container)):
    """清空内存层；若给出 namespace + method，同时删除对应文件缓存条目"""
    cleared = []
    if body.memory:
        await container.series_cache.clear()
        cleared.append("memory")
    if body.namespace and body.method:
        if await asyncio.to_thread(
            container.result_cache.delete, body.namespace, body.method, body.params
        ):
            cleared.append(f"{body.namespace}:{body.method}")
    return ApiResponse.ok(data={"cleared": cleared}, message=f"缓存已清理: {', '.join(cleared) or '无'}")


@router.post("/cleanup", response_model=ApiResponse)
async def cleanup_cache(body: CleanupRequest, container: ServiceContainer = Depends(get_container)):
    """删除早于 max_age_seconds 的 CSV 文件与文件缓存"""
    csv_removed = await asyncio.to_thread(container.series_cache.cleanup_expired, body.max_age_seconds)
    json_removed = await asyncio.to_thread(container.result_cache.cleanup, body.max_age_seconds)
    return ApiResponse.ok(data={"csv_removed": csv_removed, "file_removed": json_removed})
