"""
行情数据服务配置模块
支持从环境变量及 .env 文件读取配置
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from market_data_service.layers.retry import RetryConfig


class MarketDataSettings(BaseSettings):
    """行情数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 通用文件缓存 ──────────────────────────────────────
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_DIR: str = Field(default="./data/cache")    # 文件缓存目录
    CACHE_TTL: int = Field(default=86400)             # 通用缓存 TTL（秒）
    INDICATOR_CACHE_TTL: int = Field(default=1800)    # 指标结果 TTL（秒）

    # ── 行情序列两级缓存 ──────────────────────────────────
    DATA_DIR: str = Field(default="./data")           # CSV 持久层根目录
    MEMORY_CACHE_TTL: int = Field(default=300)        # 内存层 TTL（秒）
    DURABLE_CACHE_STALE_AFTER: int = Field(default=1800)  # CSV 层过期阈值（秒）
    MEMORY_CACHE_MAX_ENTRIES: int = Field(default=0)  # 0 表示不限制

    # ── 重试 / 限流 ───────────────────────────────────────
    RETRY_MAX_RETRIES: int = Field(default=3)
    RETRY_BASE_DELAY: float = Field(default=1.0)
    RETRY_MAX_DELAY: float = Field(default=30.0)
    RETRY_MULTIPLIER: float = Field(default=2.0)
    RETRY_DEADLINE: Optional[float] = Field(default=None)
    RATE_LIMIT_PER_SECOND: float = Field(default=0.0)  # 0 表示不限流
    RATE_LIMIT_BURST: int = Field(default=1)

    # ── 数据提供商 ────────────────────────────────────────
    MARKET_DATA_SOURCE: str = Field(default="yfinance")  # yfinance / akshare / tushare
    TUSHARE_TOKEN: str = Field(default="")

    # ── 技术分析 ──────────────────────────────────────────
    BATCH_MAX_CONCURRENCY: int = Field(default=4)
    DEFAULT_LOOK_BACK_DAYS: int = Field(default=30)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.RETRY_MAX_RETRIES,
            base_delay=self.RETRY_BASE_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            multiplier=self.RETRY_MULTIPLIER,
            deadline=self.RETRY_DEADLINE,
        )


@lru_cache
def get_settings() -> MarketDataSettings:
    """获取进程级配置（仅在启动时读取一次）"""
    return MarketDataSettings()
