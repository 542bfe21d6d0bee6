"""数据处理层测试"""

from datetime import date, datetime

import pytest

from conftest import sample_bars, sample_records
from market_data_service.errors import InvalidSymbolError
from market_data_service.layers.processing import (
    ProcessingLayer,
    ensure_ascending,
    parse_date,
    validate_symbol,
)


class TestSymbolsAndDates:
    def test_validate_symbol_normalizes(self):
        assert validate_symbol("  aapl ") == "AAPL"

    @pytest.mark.parametrize("bad", ["", "   ", "X" * 13])
    def test_validate_symbol_rejects(self, bad):
        with pytest.raises(InvalidSymbolError):
            validate_symbol(bad)

    @pytest.mark.parametrize("raw", ["2024-03-05", "20240305", "2024-03-05 15:00:00", "03/05/2024"])
    def test_parse_date_formats(self, raw):
        assert parse_date(raw) == date(2024, 3, 5)

    def test_parse_date_passthrough(self):
        assert parse_date(datetime(2024, 3, 5, 9, 30)) == date(2024, 3, 5)
        assert parse_date(date(2024, 3, 5)) == date(2024, 3, 5)

    def test_parse_date_invalid(self):
        with pytest.raises(ValueError):
            parse_date("not-a-date")


class TestProcessingLayer:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_normalize_empty(self):
        df = self.proc.normalize_ohlcv([])
        assert df.empty
        assert self.proc.normalize_bars([], "ABC") == []

    def test_normalize_basic(self):
        df = self.proc.normalize_ohlcv(sample_records(10))
        assert len(df) == 10
        assert list(df.columns[:6]) == ["date", "open", "high", "low", "close", "volume"]

    def test_normalize_sorts_by_date(self):
        records = sample_records(5)[::-1]
        bars = self.proc.normalize_bars(records, "ABC")
        dates = [b.date for b in bars]
        assert dates == sorted(dates)

    def test_duplicate_dates_keep_last(self):
        records = sample_records(3)
        dup = dict(records[1], close=99.0)
        bars = self.proc.normalize_bars(records + [dup], "ABC")
        assert len(bars) == 3
        assert bars[1].close == 99.0
        ensure_ascending(bars)

    def test_invalid_rows_dropped(self):
        records = sample_records(3)
        records.append({"date": "garbage", "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1})
        records.append({"date": "2030-01-01", "open": "n/a", "high": 1, "low": 1, "close": 1})
        assert len(self.proc.normalize_bars(records, "ABC")) == 3

    def test_volume_is_int(self):
        bars = self.proc.normalize_bars([dict(sample_records(1)[0], volume=1234.0)], "ABC")
        assert bars[0].volume == 1234
        assert isinstance(bars[0].volume, int)

    def test_bars_to_frame(self):
        df = self.proc.bars_to_frame(sample_bars(5))
        assert df.index.name == "date"
        assert list(df.columns) == ["open", "high", "low", "close", "volume"]

    def test_ensure_ascending_rejects(self):
        bars = sample_bars(3)
        with pytest.raises(ValueError):
            ensure_ascending([bars[1], bars[0]])
