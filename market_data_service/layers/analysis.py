"""
Layer 4 – 技术分析层
在按日期升序的 Bar 序列上计算技术指标：SMA、EMA、RSI、MACD、BOLL、ATR、VWMA、MFI

所有指标都在完整历史上计算，只输出落在报告窗口 [start, end] 内的点；
回看周期不足时抛出 InsufficientDataError，calculate_all 中只影响该指标本身。
"""

import logging
import re
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from market_data_service.errors import InsufficientDataError
from market_data_service.layers.processing import ProcessingLayer, ensure_ascending
from market_data_service.models.market import (
    Bar,
    IndicatorBatch,
    IndicatorPoint,
    IndicatorSeries,
)

logger = logging.getLogger(__name__)

RSI_PERIOD = 14
MACD_FAST, MACD_SLOW, MACD_SIGNAL = 12, 26, 9
BOLL_PERIOD, BOLL_STD_MULTIPLIER = 20, 2.0
ATR_PERIOD = 14
VWMA_PERIOD = 20
MFI_PERIOD = 14

DEFAULT_INDICATORS: Tuple[str, ...] = (
    "close_10_ema",
    "close_50_sma",
    "close_200_sma",
    "vwma",
    "rsi",
    "macd",
    "macds",
    "macdh",
    "mfi",
    "boll",
    "boll_ub",
    "boll_lb",
    "atr",
)

INDICATOR_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "moving_averages": ("close_10_ema", "close_50_sma", "close_200_sma", "vwma"),
    "momentum": ("rsi", "macd", "macds", "macdh", "mfi"),
    "volatility": ("boll", "boll_ub", "boll_lb", "atr"),
}

INDICATOR_DESCRIPTIONS: Dict[str, str] = {
    "close_50_sma": "50 日 SMA：中期趋势指标。用于判断趋势方向并作为动态支撑/阻力；存在滞后，宜配合更快的指标。",
    "close_200_sma": "200 日 SMA：长期趋势基准。用于确认整体趋势及金叉/死叉；反应较慢，适合战略层面确认。",
    "close_10_ema": "10 日 EMA：灵敏的短期均线。用于捕捉动量变化和潜在入场点；震荡市噪声较多，需配合长期均线过滤。",
    "vwma": "VWMA：成交量加权均线。结合价格与成交量确认趋势；注意放量尖峰导致的偏差。",
    "macd": "MACD：EMA12 与 EMA26 之差。关注交叉与背离以判断趋势变化；低波动或横盘时需其他指标确认。",
    "macds": "MACD 信号线：MACD 的 EMA9 平滑。与 MACD 线交叉可作为交易触发；应纳入更完整的策略以避免假信号。",
    "macdh": "MACD 柱：MACD 与信号线之差。直观反映动量强弱并提前发现背离；波动较大，快速行情中需额外过滤。",
    "rsi": "RSI：衡量动量以识别超买/超卖。常用 70/30 阈值并关注背离；强趋势中可能长期处于极值，需结合趋势分析。",
    "mfi": "MFI：资金流量指标，结合价格与成交量衡量买卖压力。>80 超买、<20 超卖；与 RSI 或 MACD 配合确认信号。",
    "boll": "布林中轨：20 日 SMA，作为价格运动的动态基准；与上下轨配合识别突破或反转。",
    "boll_ub": "布林上轨：中轨上方 2 倍标准差。提示潜在超买与突破区域；强趋势中价格可能沿上轨运行。",
    "boll_lb": "布林下轨：中轨下方 2 倍标准差。提示潜在超卖；需其他分析避免假反转信号。",
    "atr": "ATR：真实波幅均值，衡量波动率。用于设置止损和调整仓位；属于滞后指标，应作为风控体系的一部分。",
}

_MA_NAME_RE = re.compile(r"^close_(\d+)_(sma|ema)$")


def describe(name: str) -> Optional[str]:
    return INDICATOR_DESCRIPTIONS.get(name)


# ── 窗口计算工具 ──────────────────────────────────────────

def _rolling(values: pd.Series, period: int, func: Callable[[np.ndarray], np.ndarray]) -> pd.Series:
    """逐窗口精确计算（避免滚动累加的浮点漂移），结果对齐到窗口末尾"""
    if len(values) < period:
        return pd.Series(dtype="float64")
    windows = np.lib.stride_tricks.sliding_window_view(values.to_numpy(dtype="float64"), period)
    return pd.Series(func(windows), index=values.index[period - 1:])


def _window_mean(values: pd.Series, period: int) -> pd.Series:
    return _rolling(values, period, lambda w: w.mean(axis=1))


def _window_sum(values: pd.Series, period: int) -> pd.Series:
    return _rolling(values, period, lambda w: w.sum(axis=1))


def _window_std(values: pd.Series, period: int) -> pd.Series:
    # 总体标准差（ddof=0）
    return _rolling(values, period, lambda w: w.std(axis=1))


def _seeded_ewm(values: pd.Series, period: int, alpha: float) -> pd.Series:
    """以前 period 个值的简单均值为种子的递推平滑：y_t = x_t * alpha + y_{t-1} * (1 - alpha)"""
    seeded = values.iloc[period - 1:].astype("float64").copy()
    seeded.iloc[0] = values.iloc[:period].mean()
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def _ema(values: pd.Series, period: int) -> pd.Series:
    return _seeded_ewm(values, period, 2.0 / (period + 1))


class IndicatorEngine:
    """技术指标计算引擎，无共享可变状态，可跨标的并行使用"""

    def __init__(self):
        self._proc = ProcessingLayer()

    # ── 各指标（完整历史，按日期索引） ──────────────────

    @staticmethod
    def _require(name: str, df: pd.DataFrame, required: int) -> None:
        if len(df) < required:
            raise InsufficientDataError(name, required, len(df))

    def _sma(self, df: pd.DataFrame, period: int, name: str = "sma") -> pd.Series:
        self._require(name, df, period)
        return _window_mean(df["close"], period)

    def _ema(self, df: pd.DataFrame, period: int, name: str = "ema") -> pd.Series:
        self._require(name, df, period)
        return _ema(df["close"], period)

    def _rsi(self, df: pd.DataFrame, period: int = RSI_PERIOD) -> pd.Series:
        self._require("rsi", df, period + 1)
        delta = df["close"].diff().iloc[1:]
        avg_gain = _seeded_ewm(delta.clip(lower=0), period, 1.0 / period)
        avg_loss = _seeded_ewm((-delta).clip(lower=0), period, 1.0 / period)
        has_loss = avg_loss != 0
        rs = avg_gain / avg_loss.where(has_loss)
        return (100 - 100 / (1 + rs)).where(has_loss, 100.0)

    def _macd(self, df: pd.DataFrame) -> pd.Series:
        self._require("macd", df, MACD_SLOW)
        fast = _ema(df["close"], MACD_FAST)
        slow = _ema(df["close"], MACD_SLOW)
        # 按日期对齐，从慢线第一个值开始
        return (fast - slow).dropna()

    def _macd_signal(self, df: pd.DataFrame) -> pd.Series:
        self._require("macds", df, MACD_SLOW + MACD_SIGNAL - 1)
        return _ema(self._macd(df), MACD_SIGNAL)

    def _macd_histogram(self, df: pd.DataFrame) -> pd.Series:
        self._require("macdh", df, MACD_SLOW + MACD_SIGNAL - 1)
        macd = self._macd(df)
        signal = self._macd_signal(df)
        joined = pd.concat([macd.rename("macd"), signal.rename("signal")], axis=1, join="inner")
        dropped = len(macd.index.symmetric_difference(signal.index))
        if dropped:
            logger.debug(f"MACD 柱按日期对齐，丢弃 {dropped} 个不匹配日期")
        return joined["macd"] - joined["signal"]

    def _bollinger(self, df: pd.DataFrame, band: str) -> pd.Series:
        name = {"middle": "boll", "upper": "boll_ub", "lower": "boll_lb"}[band]
        self._require(name, df, BOLL_PERIOD)
        middle = _window_mean(df["close"], BOLL_PERIOD)
        if band == "middle":
            return middle
        width = BOLL_STD_MULTIPLIER * _window_std(df["close"], BOLL_PERIOD)
        return middle + width if band == "upper" else middle - width

    def _atr(self, df: pd.DataFrame, period: int = ATR_PERIOD) -> pd.Series:
        # 真实波幅的简单滚动均值（非 Wilder 平滑）
        self._require("atr", df, period + 1)
        prev_close = df["close"].shift(1)
        tr = pd.concat([
            df["high"] - df["low"],
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ], axis=1).max(axis=1).iloc[1:]
        return _window_mean(tr, period)

    def _vwma(self, df: pd.DataFrame, period: int = VWMA_PERIOD) -> pd.Series:
        self._require("vwma", df, period)
        weighted = _window_sum(df["close"] * df["volume"], period)
        volume = _window_sum(df["volume"], period)
        has_volume = volume != 0
        return (weighted / volume.where(has_volume)).where(has_volume, 0.0)

    def _mfi(self, df: pd.DataFrame, period: int = MFI_PERIOD) -> pd.Series:
        self._require("mfi", df, period + 1)
        typical = (df["high"] + df["low"] + df["close"]) / 3
        raw_flow = typical * df["volume"]
        change = typical.diff()
        positive = _window_sum(raw_flow.where(change > 0, 0.0).iloc[1:], period)
        negative = _window_sum(raw_flow.where(change < 0, 0.0).iloc[1:], period)
        has_negative = negative != 0
        ratio = positive / negative.where(has_negative)
        return (100 - 100 / (1 + ratio)).where(has_negative, 100.0)

    def _resolve(self, name: str) -> Callable[[pd.DataFrame], pd.Series]:
        fixed: Dict[str, Callable[[pd.DataFrame], pd.Series]] = {
            "rsi": self._rsi,
            "macd": self._macd,
            "macds": self._macd_signal,
            "macdh": self._macd_histogram,
            "boll": lambda df: self._bollinger(df, "middle"),
            "boll_ub": lambda df: self._bollinger(df, "upper"),
            "boll_lb": lambda df: self._bollinger(df, "lower"),
            "atr": self._atr,
            "vwma": self._vwma,
            "mfi": self._mfi,
        }
        if name in fixed:
            return fixed[name]
        match = _MA_NAME_RE.match(name)
        if match:
            period, kind = int(match.group(1)), match.group(2)
            if period < 1:
                raise ValueError(f"均线周期必须为正数: {name}")
            if kind == "sma":
                return lambda df: self._sma(df, period, name)
            return lambda df: self._ema(df, period, name)
        raise ValueError(f"不支持的指标: {name}")

    # ── 对外接口 ──────────────────────────────────────────

    def _frame(self, bars: List[Bar]) -> pd.DataFrame:
        ordered = sorted(bars, key=lambda b: b.date)
        ensure_ascending(ordered)
        return self._proc.bars_to_frame(ordered)

    @staticmethod
    def _to_indicator(
        name: str, values: pd.Series, start: Optional[date], end: Optional[date]
    ) -> IndicatorSeries:
        points = [
            IndicatorPoint(date=day, value=float(value))
            for day, value in values.dropna().items()
            if (start is None or day >= start) and (end is None or day <= end)
        ]
        return IndicatorSeries(name=name, points=points)

    def calculate(
        self,
        name: str,
        bars: List[Bar],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> IndicatorSeries:
        """计算单个指标；数据不足抛出 InsufficientDataError，未知指标抛出 ValueError"""
        func = self._resolve(name)
        return self._to_indicator(name, func(self._frame(bars)), start, end)

    def calculate_all(
        self,
        bars: List[Bar],
        start: Optional[date] = None,
        end: Optional[date] = None,
        names: Optional[Iterable[str]] = None,
    ) -> IndicatorBatch:
        """
        一次性计算多个指标

        每个指标独立计算，失败的指标被省略并记录原因，不影响其余指标。
        """
        selected = list(dict.fromkeys(names)) if names is not None else list(DEFAULT_INDICATORS)
        batch = IndicatorBatch(attempted=len(selected))
        if not bars:
            for name in selected:
                batch.failures[name] = "无行情数据"
            logger.info(f"指标计算完成 {batch.succeeded}/{batch.attempted}（无行情数据）")
            return batch

        df = self._frame(bars)
        for name in selected:
            try:
                values = self._resolve(name)(df)
            except (InsufficientDataError, ValueError) as exc:
                batch.failures[name] = str(exc)
                logger.debug(f"指标 {name} 计算失败: {exc}")
                continue
            batch.results[name] = self._to_indicator(name, values, start, end)
            batch.succeeded += 1

        logger.info(f"指标计算完成 {batch.succeeded}/{batch.attempted}")
        return batch

    # ── 便捷方法 ──────────────────────────────────────────

    def sma(self, bars: List[Bar], period: int, start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate(f"close_{period}_sma", bars, start, end)

    def ema(self, bars: List[Bar], period: int, start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate(f"close_{period}_ema", bars, start, end)

    def rsi(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate("rsi", bars, start, end)

    def macd(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> Tuple[IndicatorSeries, IndicatorSeries, IndicatorSeries]:
        """返回 (MACD 线, 信号线, 柱)"""
        return (
            self.calculate("macd", bars, start, end),
            self.calculate("macds", bars, start, end),
            self.calculate("macdh", bars, start, end),
        )

    def bollinger(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> Tuple[IndicatorSeries, IndicatorSeries, IndicatorSeries]:
        """返回 (上轨, 中轨, 下轨)"""
        return (
            self.calculate("boll_ub", bars, start, end),
            self.calculate("boll", bars, start, end),
            self.calculate("boll_lb", bars, start, end),
        )

    def atr(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate("atr", bars, start, end)

    def vwma(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate("vwma", bars, start, end)

    def mfi(self, bars: List[Bar], start: Optional[date] = None, end: Optional[date] = None) -> IndicatorSeries:
        return self.calculate("mfi", bars, start, end)
