"""技术指标引擎测试"""

from datetime import date, timedelta

import pytest

from conftest import LAST_DAY, constant_bars, sample_bars
from market_data_service.errors import InsufficientDataError
from market_data_service.layers.analysis import DEFAULT_INDICATORS, IndicatorEngine
from market_data_service.models.market import Bar


class TestConstantSeries:
    def setup_method(self):
        self.engine = IndicatorEngine()
        self.bars = constant_bars(60, close=10.0, volume=1000)

    def test_sma(self):
        series = self.engine.sma(self.bars, 10)
        assert len(series) == 51
        assert all(p.value == pytest.approx(10.0) for p in series.points)

    def test_ema(self):
        series = self.engine.ema(self.bars, 10)
        assert all(p.value == pytest.approx(10.0) for p in series.points)

    def test_vwma(self):
        series = self.engine.vwma(self.bars)
        assert all(p.value == pytest.approx(10.0) for p in series.points)

    def test_rsi_is_100_without_losses(self):
        series = self.engine.rsi(self.bars)
        assert len(series) == 60 - 14
        assert all(p.value == 100.0 for p in series.points)

    def test_bollinger_collapses(self):
        upper, middle, lower = self.engine.bollinger(self.bars)
        for u, m, low in zip(upper.points, middle.points, lower.points):
            assert u.value == pytest.approx(10.0)
            assert m.value == pytest.approx(10.0)
            assert low.value == pytest.approx(10.0)


class TestIndicatorProperties:
    def setup_method(self):
        self.engine = IndicatorEngine()
        self.bars = sample_bars(120)

    def test_rsi_bounds(self):
        values = [p.value for p in self.engine.rsi(self.bars).points]
        assert values
        assert all(0 <= v <= 100 for v in values)

    def test_mfi_bounds(self):
        values = [p.value for p in self.engine.mfi(self.bars).points]
        assert values
        assert all(0 <= v <= 100 for v in values)

    def test_macd_histogram_identity(self):
        macd, signal, hist = self.engine.macd(self.bars)
        macd_by_day, signal_by_day = macd.as_dict(), signal.as_dict()
        assert len(hist) == len(signal)
        for point in hist.points:
            assert point.value == macd_by_day[point.date] - signal_by_day[point.date]

    def test_macd_lookbacks(self):
        macd, signal, hist = self.engine.macd(self.bars)
        assert len(macd) == 120 - 25
        assert len(signal) == 120 - 25 - 8
        assert macd.points[0].date == self.bars[25].date

    def test_bollinger_ordering(self):
        upper, middle, lower = self.engine.bollinger(self.bars)
        assert len(upper) == len(middle) == len(lower) == 120 - 19
        for u, m, low in zip(upper.points, middle.points, lower.points):
            assert u.date == m.date == low.date
            assert u.value >= m.value >= low.value

    def test_dates_unique_and_ascending(self):
        for name in DEFAULT_INDICATORS[:2]:
            series = self.engine.calculate(name, self.bars)
            dates = [p.date for p in series.points]
            assert dates == sorted(set(dates))

    def test_sma_value(self):
        series = self.engine.sma(self.bars, 5)
        expected = sum(b.close for b in self.bars[:5]) / 5
        assert series.points[0].value == pytest.approx(expected)
        assert series.points[0].date == self.bars[4].date

    def test_ema_seeded_with_sma(self):
        series = self.engine.ema(self.bars, 10)
        seed = sum(b.close for b in self.bars[:10]) / 10
        alpha = 2 / 11
        assert series.points[0].value == pytest.approx(seed)
        assert series.points[1].value == pytest.approx(self.bars[10].close * alpha + seed * (1 - alpha))


class TestAtrAndVolume:
    def setup_method(self):
        self.engine = IndicatorEngine()

    def test_atr_constant_range(self):
        start = LAST_DAY - timedelta(days=29)
        bars = [
            Bar(symbol="ABC", date=start + timedelta(days=i), open=10, high=11, low=9, close=10, volume=100)
            for i in range(30)
        ]
        series = self.engine.atr(bars)
        assert len(series) == 30 - 14
        assert all(p.value == pytest.approx(2.0) for p in series.points)

    def test_atr_uses_gap_from_previous_close(self):
        bars = constant_bars(16, close=10.0)
        last = bars[-1]
        bars[-1] = Bar(symbol="ABC", date=last.date, open=14, high=15, low=14, close=14.5, volume=1000)
        series = self.engine.atr(bars)
        # 最后一根真实波幅 = |15 - 10| = 5，其余为 0
        assert series.latest.value == pytest.approx(5 / 14)

    def test_vwma_zero_volume(self):
        series = self.engine.vwma(constant_bars(25, volume=0))
        assert all(p.value == 0.0 for p in series.points)

    def test_mfi_no_negative_flow(self):
        start = LAST_DAY - timedelta(days=19)
        bars = [
            Bar(symbol="ABC", date=start + timedelta(days=i), open=10 + i, high=11 + i, low=9 + i, close=10 + i, volume=100)
            for i in range(20)
        ]
        assert all(p.value == 100.0 for p in self.engine.mfi(bars).points)


class TestCalculateAll:
    def setup_method(self):
        self.engine = IndicatorEngine()

    def test_short_series_degrades(self):
        bars = constant_bars(5)
        batch = self.engine.calculate_all(bars)
        assert batch.attempted == len(DEFAULT_INDICATORS)
        assert batch.succeeded == 0
        assert batch.results == {}
        assert set(batch.failures) == set(DEFAULT_INDICATORS)

    def test_partial_results(self):
        batch = self.engine.calculate_all(sample_bars(60))
        assert batch.attempted == 13
        assert batch.succeeded == len(batch.results)
        # 200 日均线数据不足，其余指标成功
        assert "close_200_sma" in batch.failures
        assert "close_50_sma" in batch.results
        assert batch.succeeded == 12

    def test_reporting_window(self):
        bars = sample_bars(100)
        end = bars[-1].date
        start = end - timedelta(days=9)
        batch = self.engine.calculate_all(bars, start, end, ["rsi", "atr"])
        for series in batch.results.values():
            assert len(series) == 10
            assert all(start <= p.date <= end for p in series.points)

    def test_unknown_indicator_isolated(self):
        batch = self.engine.calculate_all(sample_bars(40), names=["rsi", "kdj"])
        assert batch.succeeded == 1
        assert batch.attempted == 2
        assert "kdj" in batch.failures

    def test_empty_series(self):
        batch = self.engine.calculate_all([], names=["rsi"])
        assert batch.succeeded == 0 and batch.attempted == 1

    def test_unsorted_input_is_sorted(self):
        bars = sample_bars(30)
        shuffled = bars[::-1]
        assert self.engine.sma(shuffled, 5).points == self.engine.sma(bars, 5).points

    def test_duplicate_dates_rejected(self):
        bars = sample_bars(30)
        with pytest.raises(ValueError):
            self.engine.calculate("rsi", bars + [bars[-1]])

    def test_calculate_errors(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            self.engine.calculate("close_50_sma", sample_bars(10))
        assert exc_info.value.required == 50
        assert exc_info.value.available == 10
        with pytest.raises(ValueError):
            self.engine.calculate("unknown", sample_bars(10))

    def test_render(self):
        series = self.engine.sma(sample_bars(6), 5)
        lines = series.render(precision=2).splitlines()
        assert len(lines) == 2
        assert lines[-1].startswith(LAST_DAY.isoformat() + ": ")
        assert series.value_at(date(1990, 1, 1)) is None
        assert series.value_at(LAST_DAY) == series.latest.value
