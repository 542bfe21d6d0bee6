"""
共享测试夹具：假数据源、示例 K 线、可控时钟
"""

import os
import sys
from datetime import date, timedelta
from typing import List

import pytest

# 确保仓库根目录（market_data_service/ 的父目录）在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from market_data_service.models.market import Bar  # noqa: E402

LAST_DAY = date(2024, 6, 28)


def sample_records(n: int = 30, end: date = LAST_DAY, start_close: float = 10.0) -> List[dict]:
    """按日期升序生成 n 条确定性的 OHLCV 记录（锯齿走势，涨跌交替）"""
    records = []
    close = start_close
    for i in range(n):
        d = end - timedelta(days=n - 1 - i)
        close = round(close * (1.013 if i % 3 else 0.985), 4)
        records.append({
            "date": d.isoformat(),
            "open": round(close * 0.995, 4),
            "high": round(close * 1.01, 4),
            "low": round(close * 0.98, 4),
            "close": close,
            "volume": 100000 + (i * 7919) % 50000,
        })
    return records


def sample_bars(n: int = 30, symbol: str = "ABC", end: date = LAST_DAY) -> List[Bar]:
    return [Bar(symbol=symbol, **r) for r in sample_records(n, end)]


def constant_bars(n: int, close: float = 10.0, volume: int = 1000, symbol: str = "ABC") -> List[Bar]:
    start = LAST_DAY - timedelta(days=n - 1)
    return [
        Bar(
            symbol=symbol,
            date=start + timedelta(days=i),
            open=close,
            high=close,
            low=close,
            close=close,
            volume=volume,
        )
        for i in range(n)
    ]


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSource:
    """
    测试用行情数据源

    - fail_times: 前 N 次调用抛出 RuntimeError
    - failing_symbols: 这些代码总是失败
    - error: 若设置则每次都抛出该异常
    """

    name = "fake"

    def __init__(self, history: int = 600):
        self.history = history
        self.calls = []
        self.fail_times = 0
        self.failing_symbols = set()
        self.error = None

    async def fetch_daily_bars(self, symbol: str, count: int) -> List[dict]:
        self.calls.append((symbol, count))
        if self.error is not None:
            raise self.error
        if symbol in self.failing_symbols:
            raise RuntimeError(f"upstream unavailable: {symbol}")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("rate limited")
        return sample_records(min(count, self.history))


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def fake_source():
    return FakeSource()
