"""
技术分析服务
整合行情服务 + 分析层，提供技术指标计算的高级接口
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from market_data_service.errors import CacheIOError, ConfigurationError, MarketDataError
from market_data_service.layers.analysis import DEFAULT_INDICATORS, IndicatorEngine, describe
from market_data_service.layers.cache import PersistentCache
from market_data_service.layers.processing import parse_date, validate_symbol
from market_data_service.layers.series_cache import MarketSeriesCache
from market_data_service.models.market import IndicatorBatch
from market_data_service.services.market_service import MarketService

logger = logging.getLogger(__name__)

_RESULT_NS = "indicators"
_RESULT_METHOD = "calculate_all"


def plan_fetch_count(look_back_days: int) -> int:
    """
    需要拉取的 K 线数量：回看天数 + 指标预热缓冲

    200 SMA 需要 200 根，MACD 信号线需要 26+9 根，默认缓冲 250；
    回看期较短时多留一些。
    """
    buffer = 300 if look_back_days < 30 else 250
    return look_back_days + buffer


class TechnicalService:
    """技术分析服务"""

    def __init__(
        self,
        market: MarketService,
        engine: IndicatorEngine,
        result_cache: PersistentCache,
        series_cache: MarketSeriesCache,
        result_ttl: Optional[float] = None,
        max_concurrency: int = 4,
    ):
        self._market = market
        self._engine = engine
        self._results = result_cache
        self._series_cache = series_cache
        self._result_ttl = result_ttl
        self._max_concurrency = max(1, max_concurrency)

    async def calculate(
        self,
        symbol: str,
        curr_date: Union[str, date],
        look_back_days: int,
        indicators: Optional[Iterable[str]] = None,
        force_refresh: bool = False,
    ) -> IndicatorBatch:
        """计算 [curr_date - look_back_days, curr_date] 窗口内的指标"""
        symbol = validate_symbol(symbol)
        end = parse_date(curr_date)
        start = end - timedelta(days=look_back_days)
        names = list(dict.fromkeys(indicators)) if indicators else list(DEFAULT_INDICATORS)
        params = {
            "symbol": symbol,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "indicators": sorted(names),
        }

        if not force_refresh:
            cached, found = await asyncio.to_thread(
                self._results.get, _RESULT_NS, _RESULT_METHOD, params
            )
            if found:
                try:
                    return IndicatorBatch.model_validate(cached)
                except ValidationError as exc:
                    logger.warning(f"指标缓存内容无效，重新计算 {symbol}: {exc}")

        count = plan_fetch_count(look_back_days)
        bars = await self._market.get_daily_bars(symbol, count, force_refresh=force_refresh)
        logger.info(
            f"{symbol} 取得 {len(bars)} 根 K 线（回看 {look_back_days} 天 + 缓冲 {count - look_back_days}）"
        )
        batch = self._engine.calculate_all(bars, start, end, names)

        try:
            await asyncio.to_thread(
                self._results.set,
                _RESULT_NS,
                _RESULT_METHOD,
                params,
                batch.model_dump(mode="json"),
                ttl=self._result_ttl,
            )
        except CacheIOError as exc:
            logger.warning(f"指标结果缓存写入失败 {symbol}: {exc}")
        return batch

    async def get_indicators(
        self,
        symbol: str,
        curr_date: Union[str, date],
        look_back_days: int,
        indicators: Optional[List[str]] = None,
        force_refresh: bool = False,
        export: bool = False,
    ) -> Dict[str, Any]:
        """
        获取指定股票的技术指标

        Returns:
            {
                "symbol": "...",
                "start_date": "...", "end_date": "...",
                "succeeded": 12, "attempted": 13,
                "indicators": { "rsi": {"latest": ..., "points": [...], "text": "...", "description": "..."} },
                "failures": { "close_200_sma": "..." }
            }
        """
        symbol = validate_symbol(symbol)
        end = parse_date(curr_date)
        batch = await self.calculate(symbol, end, look_back_days, indicators, force_refresh)

        export_path = None
        if export:
            try:
                export_path = await asyncio.to_thread(self._series_cache.save_indicators, symbol, batch)
            except OSError as exc:
                logger.warning(f"指标 CSV 导出失败 {symbol}: {exc}")

        return {
            "symbol": symbol,
            "start_date": (end - timedelta(days=look_back_days)).isoformat(),
            "end_date": end.isoformat(),
            "succeeded": batch.succeeded,
            "attempted": batch.attempted,
            "indicators": {
                name: {
                    "latest": series.latest.model_dump(mode="json") if series.latest else None,
                    "points": [p.model_dump(mode="json") for p in series.points],
                    "text": series.render(),
                    "description": describe(name),
                }
                for name, series in batch.results.items()
            },
            "failures": dict(batch.failures),
            "export_path": export_path,
        }

    async def get_indicators_batch(
        self,
        symbols: Iterable[str],
        curr_date: Union[str, date],
        look_back_days: int,
        indicators: Optional[List[str]] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """
        批量计算多个标的，用信号量限制并发

        单个标的的拉取失败只记录在该标的结果中；配置错误直接抛出。
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(symbol: str):
            async with semaphore:
                try:
                    return symbol, await self.get_indicators(symbol, curr_date, look_back_days, indicators)
                except ConfigurationError:
                    raise
                except MarketDataError as exc:
                    logger.warning(f"{symbol} 指标计算失败: {exc}")
                    return symbol, {"symbol": symbol, "error": str(exc)}

        pairs = await asyncio.gather(*(_one(s) for s in symbols))
        ok = sum(1 for _, r in pairs if "error" not in r)
        logger.info(f"批量技术分析完成 {ok}/{len(pairs)}")
        return dict(pairs)
