"""
行情数据服务
整合数据获取、重试、两级缓存、处理四部分，对外提供统一的日线访问接口
"""

import logging
from typing import List

from market_data_service.layers.acquisition import MarketDataSource
from market_data_service.layers.processing import ProcessingLayer, validate_symbol
from market_data_service.layers.retry import RetryExecutor
from market_data_service.layers.series_cache import MarketSeriesCache
from market_data_service.models.market import Bar

logger = logging.getLogger(__name__)


class MarketService:
    """日线行情业务服务"""

    def __init__(
        self,
        source: MarketDataSource,
        series_cache: MarketSeriesCache,
        retry: RetryExecutor,
        processing: ProcessingLayer = None,
    ):
        self._source = source
        self._cache = series_cache
        self._retry = retry
        self._proc = processing or ProcessingLayer()

    async def get_daily_bars(
        self, symbol: str, count: int, force_refresh: bool = False
    ) -> List[Bar]:
        """
        获取最近 count 根日线（带两级缓存）

        Args:
            symbol: 股票代码
            count: K 线数量
            force_refresh: 是否跳过缓存直接拉取

        Raises:
            InvalidSymbolError: 代码格式不合法
            ConfigurationError: 上游凭证缺失（不重试）
            TransientFetchError: 重试耗尽仍失败
        """
        if count <= 0:
            raise ValueError("count 必须为正整数")
        symbol = validate_symbol(symbol)

        if not force_refresh:
            cached, found = await self._cache.get(symbol, count)
            if found:
                return cached

        # 从数据提供商拉取
        raw = await self._retry.execute(
            lambda: self._source.fetch_daily_bars(symbol, count),
            description=f"{self._source.name} {symbol}",
        )

        # 经过处理层标准化
        bars = self._proc.normalize_bars(raw, symbol)
        if not bars:
            logger.warning(f"{symbol} 未获取到任何日线数据")
            return []
        logger.info(f"{symbol} 日线获取成功（来源：{self._source.name}），共 {len(bars)} 条")

        # 写入缓存
        await self._cache.set(symbol, count, bars)
        return bars
