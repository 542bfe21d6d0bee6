"""行情数据服务异常定义"""


class MarketDataError(Exception):
    """服务内所有业务异常的基类"""


class ConfigurationError(MarketDataError):
    """上游凭证或配置缺失，不重试，直接抛给调用方"""


class TransientFetchError(MarketDataError):
    """上游拉取在重试耗尽后仍失败，__cause__ 为最后一次底层异常"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class InsufficientDataError(MarketDataError):
    """单个指标的历史数据不足，仅影响该指标"""

    def __init__(self, indicator: str, required: int, available: int):
        super().__init__(
            f"{indicator} 需要至少 {required} 根 K 线，当前仅 {available} 根"
        )
        self.indicator = indicator
        self.required = required
        self.available = available


class CacheIOError(MarketDataError):
    """缓存持久层读写失败，调用方记录日志后降级"""


class ParseError(MarketDataError):
    """持久化的缓存内容损坏，无法反序列化"""


class InvalidSymbolError(MarketDataError):
    """股票代码格式不合法"""
