"""配置、数据源工厂与响应模型测试"""

import os
from unittest.mock import patch

import pytest

from market_data_service.config import MarketDataSettings
from market_data_service.container import build_container
from market_data_service.errors import ConfigurationError
from market_data_service.layers.acquisition import (
    AKShareSource,
    MarketDataSource,
    TushareSource,
    YFinanceSource,
    create_source,
)
from market_data_service.models.response import ApiResponse


class TestConfig:
    def test_defaults(self):
        s = MarketDataSettings()
        assert s.PORT == 8001
        assert s.MEMORY_CACHE_TTL == 300
        assert s.DURABLE_CACHE_STALE_AFTER == 1800
        assert s.MARKET_DATA_SOURCE == "yfinance"

    def test_env_override(self):
        with patch.dict(os.environ, {"RETRY_MAX_RETRIES": "5", "CACHE_ENABLED": "false"}, clear=False):
            s = MarketDataSettings()
        assert s.RETRY_MAX_RETRIES == 5
        assert s.CACHE_ENABLED is False

    def test_retry_config(self):
        cfg = MarketDataSettings(RETRY_BASE_DELAY=0.5, RETRY_MAX_DELAY=8, RETRY_DEADLINE=20).retry_config()
        assert cfg.base_delay == 0.5
        assert cfg.max_delay == 8
        assert cfg.deadline == 20
        assert cfg.max_retries == 3


class TestSourceFactory:
    @pytest.mark.parametrize("name, cls", [
        ("yfinance", YFinanceSource),
        ("AKShare", AKShareSource),
    ])
    def test_create(self, name, cls):
        source = create_source(MarketDataSettings(MARKET_DATA_SOURCE=name))
        assert isinstance(source, cls)
        assert isinstance(source, MarketDataSource)

    def test_tushare_requires_token(self):
        with pytest.raises(ConfigurationError):
            create_source(MarketDataSettings(MARKET_DATA_SOURCE="tushare", TUSHARE_TOKEN=""))
        source = create_source(MarketDataSettings(MARKET_DATA_SOURCE="tushare", TUSHARE_TOKEN="t"))
        assert isinstance(source, TushareSource)

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError):
            create_source(MarketDataSettings(MARKET_DATA_SOURCE="bloomberg"))


class TestContainer:
    def test_build_with_injected_source(self, tmp_path, fake_source):
        settings = MarketDataSettings(
            CACHE_DIR=str(tmp_path / "cache"),
            DATA_DIR=str(tmp_path),
            RATE_LIMIT_PER_SECOND=5,
        )
        container = build_container(settings, source=fake_source)
        assert container.source is fake_source
        assert container.retry._limiter is not None
        assert container.series_cache.stats()["status"] == "healthy"


class TestApiResponse:
    def test_ok(self):
        r = ApiResponse.ok(data={"key": "value"}, message="done")
        assert r.success is True
        assert r.data == {"key": "value"}
        assert r.error is None

    def test_fail(self):
        r = ApiResponse.fail(error="not found")
        assert r.success is False
        assert r.error == "not found"
