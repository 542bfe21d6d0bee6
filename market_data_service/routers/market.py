"""
行情数据路由
GET /api/market/{symbol}/bars   - 获取最近 N 根日线
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from market_data_service.container import ServiceContainer
from market_data_service.dependencies import get_container
from market_data_service.errors import ConfigurationError, InvalidSymbolError, TransientFetchError
from market_data_service.models.response import ApiResponse

router = APIRouter(prefix="/api/market", tags=["行情数据"])

_DEFAULT_COUNT = 30


@router.get("/{symbol}/bars", response_model=ApiResponse)
async def get_daily_bars(
    symbol: str,
    count: int = Query(default=_DEFAULT_COUNT, ge=1, le=5000, description="K 线数量"),
    force_refresh: bool = Query(default=False),
    container: ServiceContainer = Depends(get_container),
):
    """获取最近 count 根日线（内存 → CSV → 上游）"""
    try:
        bars = await container.market.get_daily_bars(symbol, count, force_refresh=force_refresh)
    except InvalidSymbolError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except TransientFetchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return ApiResponse.ok(
        data=[b.model_dump(mode="json") for b in bars],
        message=f"共 {len(bars)} 条",
    )
