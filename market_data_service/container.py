"""
服务装配
进程启动时显式构造各层实例，通过构造函数注入依赖，不使用模块级单例
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from market_data_service.config import MarketDataSettings
from market_data_service.layers.acquisition import MarketDataSource, create_source
from market_data_service.layers.analysis import IndicatorEngine
from market_data_service.layers.cache import PersistentCache
from market_data_service.layers.processing import ProcessingLayer
from market_data_service.layers.retry import RateLimiter, RetryExecutor
from market_data_service.layers.series_cache import MarketSeriesCache, SeriesStore
from market_data_service.services.market_service import MarketService
from market_data_service.services.technical_service import TechnicalService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: MarketDataSettings
    source: MarketDataSource
    retry: RetryExecutor
    result_cache: PersistentCache
    series_cache: MarketSeriesCache
    engine: IndicatorEngine
    market: MarketService
    technical: TechnicalService

    async def shutdown(self) -> None:
        await self.series_cache.flush()


def build_container(
    settings: MarketDataSettings,
    source: Optional[MarketDataSource] = None,
    retry: Optional[RetryExecutor] = None,
) -> ServiceContainer:
    """按配置装配服务；source / retry 可注入替身用于测试"""
    if source is None:
        source = create_source(settings)

    if retry is None:
        limiter = None
        if settings.RATE_LIMIT_PER_SECOND > 0:
            limiter = RateLimiter(settings.RATE_LIMIT_PER_SECOND, settings.RATE_LIMIT_BURST)
        retry = RetryExecutor(settings.retry_config(), rate_limiter=limiter)

    result_cache = PersistentCache(
        cache_dir=settings.CACHE_DIR,
        ttl=settings.CACHE_TTL,
        enabled=settings.CACHE_ENABLED,
    )
    series_cache = MarketSeriesCache(
        store=SeriesStore(settings.DATA_DIR),
        memory_ttl=settings.MEMORY_CACHE_TTL,
        durable_stale_after=settings.DURABLE_CACHE_STALE_AFTER,
        max_entries=settings.MEMORY_CACHE_MAX_ENTRIES,
        enabled=settings.CACHE_ENABLED,
    )
    processing = ProcessingLayer()
    engine = IndicatorEngine()
    market = MarketService(source, series_cache, retry, processing)
    technical = TechnicalService(
        market,
        engine,
        result_cache,
        series_cache,
        result_ttl=settings.INDICATOR_CACHE_TTL,
        max_concurrency=settings.BATCH_MAX_CONCURRENCY,
    )
    logger.info(
        f"服务装配完成: 数据源={source.name} 缓存={'启用' if settings.CACHE_ENABLED else '禁用'} "
        f"缓存目录={os.path.abspath(settings.CACHE_DIR)}"
    )
    return ServiceContainer(
        settings=settings,
        source=source,
        retry=retry,
        result_cache=result_cache,
        series_cache=series_cache,
        engine=engine,
        market=market,
        technical=technical,
    )
