"""
重试执行器
对不稳定、有频率限制的上游调用做指数退避重试，可选共享令牌桶限流
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from market_data_service.errors import ConfigurationError, TransientFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """退避策略：第 n 次重试前等待 min(max_delay, base_delay * multiplier^(n-1)) 秒"""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    deadline: Optional[float] = None  # 整个重试循环的时间上限（秒）


def _is_retryable(exc: BaseException) -> bool:
    # 配置错误重试无意义；CancelledError 等非 Exception 直接透传
    return isinstance(exc, Exception) and not isinstance(exc, ConfigurationError)


class RateLimiter:
    """
    异步令牌桶

    同一上游的所有调用方共享一个实例，避免并发批量任务同步退避后同时重放。
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate 必须为正数")
        self._rate = rate
        self._capacity = max(1, burst)
        self._tokens = float(self._capacity)
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self._capacity, self._tokens + (now - self._updated) * self._rate)
        self._updated = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            while self._tokens < 1:
                await self._sleep((1 - self._tokens) / self._rate)
                self._refill()
            self._tokens -= 1


class RetryExecutor:
    """
    重试执行器

    立即调用一次 operation；失败后按 RetryConfig 退避，最多 max_retries + 1 次调用。
    耗尽后抛出 TransientFetchError，并以最后一次异常作为 __cause__。
    等待使用 asyncio.sleep，取消调用方任务即可中止进行中的重试。
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self._limiter = rate_limiter
        self._sleep = sleep

    def _stop(self):
        stop = stop_after_attempt(self.config.max_retries + 1)
        if self.config.deadline is not None:
            stop = stop | stop_after_delay(self.config.deadline)
        return stop

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"第 {retry_state.attempt_number}/{self.config.max_retries + 1} 次调用失败，"
            f"{delay:.2f}s 后重试: {exc}"
        )

    async def execute(self, operation: Callable[[], Awaitable[Any]], description: str = "") -> Any:
        """执行 operation 并返回其结果"""
        retrying = AsyncRetrying(
            stop=self._stop(),
            wait=wait_exponential(
                multiplier=self.config.base_delay,
                exp_base=self.config.multiplier,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    if self._limiter is not None:
                        await self._limiter.acquire()
                    return await operation()
        except RetryError as exc:
            last = exc.last_attempt.exception()
            label = f"{description}: " if description else ""
            raise TransientFetchError(
                f"{label}重试 {attempts} 次后仍失败: {last}", attempts=attempts
            ) from last
