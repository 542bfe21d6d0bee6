"""
技术分析路由
GET /api/technical/indicators  - 支持的指标列表
GET /api/technical/{symbol}    - 获取技术指标
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from market_data_service.container import ServiceContainer
from market_data_service.dependencies import get_container
from market_data_service.errors import ConfigurationError, InvalidSymbolError, TransientFetchError
from market_data_service.layers.analysis import DEFAULT_INDICATORS, INDICATOR_CATEGORIES, describe
from market_data_service.models.response import ApiResponse

router = APIRouter(prefix="/api/technical", tags=["技术分析"])


def _parse_indicators(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    return [i.strip().lower() for i in raw.split(",") if i.strip()]


@router.get("/indicators", response_model=ApiResponse)
async def list_indicators():
    """支持的指标及说明（另支持 close_<N>_sma / close_<N>_ema 形式的任意周期均线）"""
    return ApiResponse.ok(data={
        "default": list(DEFAULT_INDICATORS),
        "categories": {k: list(v) for k, v in INDICATOR_CATEGORIES.items()},
        "descriptions": {name: describe(name) for name in DEFAULT_INDICATORS},
    })


@router.get("/{symbol}", response_model=ApiResponse)
async def get_technical_indicators(
    symbol: str,
    curr_date: Optional[str] = Query(default=None, description="当前交易日 YYYY-MM-DD，默认今天"),
    look_back_days: Optional[int] = Query(default=None, ge=1, le=3650, description="回看天数"),
    indicators: Optional[str] = Query(
        default=None,
        description=f"逗号分隔的指标列表，支持: {', '.join(DEFAULT_INDICATORS)}，不填则计算全部",
    ),
    force_refresh: bool = Query(default=False),
    export: bool = Query(default=False, description="是否导出指标 CSV"),
    container: ServiceContainer = Depends(get_container),
):
    """
    获取股票技术分析指标

    - `indicators` 示例: `rsi,macd,boll`
    - 数据不足的指标不会导致失败，而是出现在 `failures` 中
    """
    look_back = look_back_days or container.settings.DEFAULT_LOOK_BACK_DAYS
    try:
        result = await container.technical.get_indicators(
            symbol=symbol,
            curr_date=curr_date or date.today().isoformat(),
            look_back_days=look_back,
            indicators=_parse_indicators(indicators),
            force_refresh=force_refresh,
            export=export,
        )
    except (InvalidSymbolError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    except TransientFetchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return ApiResponse.ok(
        data=result,
        meta={"succeeded": result["succeeded"], "attempted": result["attempted"]},
    )
