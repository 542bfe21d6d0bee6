"""
Layer 1 – 数据获取层
从上游行情提供商（yfinance / AKShare / Tushare）拉取最近 N 根日线，
统一规范化为原始记录后向上层提供标准接口。
SDK 调用均为阻塞 IO，统一放到线程中执行。
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Protocol, runtime_checkable

from market_data_service.config import MarketDataSettings
from market_data_service.errors import ConfigurationError

logger = logging.getLogger(__name__)

# 交易日约为自然日的 5/7，再加上节假日余量
_CALENDAR_DAYS_PER_BAR = 1.6


def _calendar_span(count: int) -> int:
    return int(count * _CALENDAR_DAYS_PER_BAR) + 10


@runtime_checkable
class MarketDataSource(Protocol):
    """上游行情提供商接口：返回按日期升序的最近 count 根日线"""

    name: str

    async def fetch_daily_bars(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        ...


# ── yfinance（美股 / 港股） ───────────────────────────────

class YFinanceSource:
    name = "yfinance"

    async def fetch_daily_bars(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch, symbol, count)

    def _fetch(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        import yfinance as yf

        start = date.today() - timedelta(days=_calendar_span(count))
        df = yf.Ticker(symbol).history(
            start=start.isoformat(), interval="1d", auto_adjust=False, actions=False
        )
        if df is None or df.empty:
            raise RuntimeError(f"yfinance 未返回数据: {symbol}")
        df = df.reset_index()
        records = []
        for _, row in df.tail(count).iterrows():
            records.append({
                "date": str(row["Date"])[:10],
                "open": float(row["Open"]),
                "high": float(row["High"]),
                "low": float(row["Low"]),
                "close": float(row["Close"]),
                "volume": int(row["Volume"]),
            })
        return records


# ── AKShare（A 股） ───────────────────────────────────────

class AKShareSource:
    name = "akshare"

    async def fetch_daily_bars(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch, symbol, count)

    def _fetch(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        import akshare as ak

        end = date.today()
        start = end - timedelta(days=_calendar_span(count))
        df = ak.stock_zh_a_hist(
            symbol=symbol,
            period="daily",
            start_date=start.strftime("%Y%m%d"),
            end_date=end.strftime("%Y%m%d"),
            adjust="qfq",
        )
        if df is None or df.empty:
            raise RuntimeError(f"AKShare 未返回数据: {symbol}")
        records = []
        for _, row in df.tail(count).iterrows():
            records.append({
                "date": str(row.get("日期", "")),
                "open": float(row.get("开盘", 0)),
                "high": float(row.get("最高", 0)),
                "low": float(row.get("最低", 0)),
                "close": float(row.get("收盘", 0)),
                "volume": int(row.get("成交量", 0)),
            })
        return records


# ── Tushare（A 股，需要 Token） ───────────────────────────

class TushareSource:
    name = "tushare"

    def __init__(self, token: str):
        if not token:
            raise ConfigurationError("TUSHARE_TOKEN 未配置")
        self._token = token

    async def fetch_daily_bars(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch, symbol, count)

    def _fetch(self, symbol: str, count: int) -> List[Dict[str, Any]]:
        import tushare as ts

        ts.set_token(self._token)
        pro = ts.pro_api()
        end = date.today()
        start = end - timedelta(days=_calendar_span(count))
        df = pro.daily(
            ts_code=symbol,
            start_date=start.strftime("%Y%m%d"),
            end_date=end.strftime("%Y%m%d"),
        )
        if df is None or df.empty:
            raise RuntimeError(f"Tushare 未返回数据: {symbol}")
        # Tushare 按日期倒序返回
        df = df.sort_values("trade_date").tail(count)
        records = []
        for _, row in df.iterrows():
            records.append({
                "date": str(row.get("trade_date", "")),
                "open": float(row.get("open", 0)),
                "high": float(row.get("high", 0)),
                "low": float(row.get("low", 0)),
                "close": float(row.get("close", 0)),
                # vol 单位为手
                "volume": int(float(row.get("vol", 0)) * 100),
            })
        return records


_SOURCES = {
    "yfinance": lambda settings: YFinanceSource(),
    "akshare": lambda settings: AKShareSource(),
    "tushare": lambda settings: TushareSource(settings.TUSHARE_TOKEN),
}


def create_source(settings: MarketDataSettings) -> MarketDataSource:
    """按配置创建数据提供商；凭证缺失时抛出 ConfigurationError"""
    name = settings.MARKET_DATA_SOURCE.strip().lower()
    factory = _SOURCES.get(name)
    if factory is None:
        raise ConfigurationError(
            f"不支持的数据提供商: {name}，可选: {', '.join(sorted(_SOURCES))}"
        )
    source = factory(settings)
    logger.info(f"行情数据提供商: {source.name}")
    return source
