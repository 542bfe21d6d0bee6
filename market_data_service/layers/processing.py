"""
Layer 3 – 数据处理层
对上游原始记录进行清洗、格式化、标准化，生成按日期升序且唯一的 Bar 序列。
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Union

import pandas as pd

from market_data_service.errors import InvalidSymbolError
from market_data_service.models.market import Bar

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%Y%m%d", "%m/%d/%Y", "%m-%d-%Y"]


# ── 代码 / 日期 ───────────────────────────────────────────

def normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


def validate_symbol(symbol: str) -> str:
    """校验并返回规范化后的代码"""
    normalized = normalize_symbol(symbol)
    if not normalized:
        raise InvalidSymbolError("股票代码不能为空")
    if len(normalized) > 12:
        raise InvalidSymbolError(f"股票代码过长: {normalized}")
    return normalized


def parse_date(value: Union[str, date, datetime]) -> date:
    """解析常见日期格式"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"无法解析日期: {value}") from None


# ── 标准化 ────────────────────────────────────────────────

class ProcessingLayer:
    """数据处理层：清洗 + 格式化 + 标准化"""

    def normalize_ohlcv(self, records: Iterable[Union[Dict[str, Any], Bar]]) -> pd.DataFrame:
        """
        将原始 OHLCV 记录标准化为 DataFrame

        标准列：date, open, high, low, close, volume；date 为 datetime.date，
        按日期升序，同一日期保留最后一条
        """
        rows = [r.model_dump() if isinstance(r, Bar) else dict(r) for r in records]
        if not rows:
            return pd.DataFrame(columns=["date"] + OHLCV_COLUMNS)

        df = pd.DataFrame(rows)

        # 确保必要列存在
        for col in ["date"] + OHLCV_COLUMNS:
            if col not in df.columns:
                df[col] = 0.0

        # 类型转换
        for col in OHLCV_COLUMNS:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["volume"] = df["volume"].fillna(0).astype("int64")
        df = df.dropna(subset=["open", "high", "low", "close"])

        # 日期格式统一
        df["date"] = pd.to_datetime(df["date"], errors="coerce")
        df = df.dropna(subset=["date"])
        df["date"] = df["date"].dt.date

        # 删除重复日期，保留最新数据
        df = df.drop_duplicates(subset=["date"], keep="last")
        df = df.sort_values("date").reset_index(drop=True)
        return df

    def to_bars(self, df: pd.DataFrame, symbol: str) -> List[Bar]:
        if df.empty:
            return []
        return [
            Bar(
                symbol=symbol,
                date=row.date,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=int(row.volume),
            )
            for row in df.itertuples(index=False)
        ]

    def normalize_bars(
        self, records: Iterable[Union[Dict[str, Any], Bar]], symbol: str
    ) -> List[Bar]:
        """原始记录 → 升序唯一的 Bar 列表"""
        return self.to_bars(self.normalize_ohlcv(records), symbol)

    def bars_to_frame(self, bars: List[Bar]) -> pd.DataFrame:
        """Bar 列表 → 以日期为索引的 DataFrame（供分析层使用）"""
        if not bars:
            return pd.DataFrame(columns=OHLCV_COLUMNS)
        df = pd.DataFrame(
            {
                "open": [b.open for b in bars],
                "high": [b.high for b in bars],
                "low": [b.low for b in bars],
                "close": [b.close for b in bars],
                "volume": [float(b.volume) for b in bars],
            },
            index=pd.Index([b.date for b in bars], name="date"),
        )
        return df


def ensure_ascending(bars: List[Bar]) -> None:
    """校验序列严格按日期升序（隐含日期唯一）"""
    for prev, cur in zip(bars, bars[1:]):
        if cur.date <= prev.date:
            raise ValueError(f"K 线序列未按日期严格升序: {prev.date} -> {cur.date}")
