"""行情与技术指标数据模型"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Bar(BaseModel):
    """单日 OHLCV K 线"""

    model_config = ConfigDict(frozen=True)

    symbol: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


class IndicatorPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    value: float


class IndicatorSeries(BaseModel):
    """
    单个指标的时间序列

    只包含回看周期已满足、且落在报告窗口内的日期，日期升序且唯一。
    """

    name: str
    points: List[IndicatorPoint] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def latest(self) -> Optional[IndicatorPoint]:
        return self.points[-1] if self.points else None

    def value_at(self, day: date) -> Optional[float]:
        for point in self.points:
            if point.date == day:
                return point.value
        return None

    def as_dict(self) -> Dict[date, float]:
        return {p.date: p.value for p in self.points}

    def render(self, precision: int = 4) -> str:
        """渲染为报告使用的文本，每行 "<date>: <value>" """
        return "\n".join(
            f"{p.date.isoformat()}: {p.value:.{precision}f}" for p in self.points
        )


class IndicatorBatch(BaseModel):
    """calculate_all 的结果：成功的指标 + 成功/尝试计数"""

    results: Dict[str, IndicatorSeries] = Field(default_factory=dict)
    succeeded: int = 0
    attempted: int = 0
    failures: Dict[str, str] = Field(default_factory=dict)

    def get(self, name: str) -> Optional[IndicatorSeries]:
        return self.results.get(name)
