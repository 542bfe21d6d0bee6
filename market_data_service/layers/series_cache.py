"""
Layer 2b – 行情序列两级缓存
内存层（短 TTL） → CSV 持久层（较长过期阈值），按 (symbol, count) 组织
"""

import asyncio
import logging
import os
import re
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd

from market_data_service.layers.processing import ProcessingLayer
from market_data_service.models.market import Bar, IndicatorBatch

logger = logging.getLogger(__name__)

_SERIES_COLUMNS = ["symbol", "date", "open", "high", "low", "close", "volume", "timestamp"]
_SERIES_FILE_RE = re.compile(r"^(?P<symbol>.+)_market_data_(?P<records>\d+)_records_(?P<stamp>[\d_]+)\.csv$")


def _safe_symbol(symbol: str) -> str:
    return re.sub(r"[^A-Za-z0-9.\-]+", "_", symbol)


def _atomic_write_csv(df: pd.DataFrame, path: str) -> None:
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix=".csv")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            df.to_csv(fh, index=False)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


# ── 读写锁 ────────────────────────────────────────────────

class AsyncReadWriteLock:
    """共享/排他锁：读者可并发，写者独占且优先于新读者"""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    async def acquire_read(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1

    async def release_read(self) -> None:
        async with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    async def acquire_write(self) -> None:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                # 放弃等待的写者不能继续挡住读者
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_write(self) -> None:
        async with self._cond:
            self._writer = False
            self._cond.notify_all()

    def read(self) -> "_LockContext":
        return _LockContext(self.acquire_read, self.release_read)

    def write(self) -> "_LockContext":
        return _LockContext(self.acquire_write, self.release_write)


class _LockContext:
    def __init__(self, acquire, release):
        self._acquire = acquire
        self._release = release

    async def __aenter__(self):
        await self._acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self._release()
        return False


# ── CSV 持久层 ────────────────────────────────────────────

class SeriesStore:
    """
    行情序列 CSV 存储

    目录结构: <base>/csv/market/<SYMBOL>/<SYMBOL>_market_data_<n>_records_<stamp>.csv
    每次写入生成新文件，timestamp 列记录写入时间用于过期判断。
    """

    def __init__(self, base_path: str, clock: Callable[[], float] = time.time):
        self.base_path = base_path
        self._clock = clock
        self._proc = ProcessingLayer()

    def _market_dir(self, symbol: str) -> str:
        return os.path.join(self.base_path, "csv", "market", _safe_symbol(symbol))

    def _indicator_dir(self, symbol: str) -> str:
        return os.path.join(self.base_path, "csv", "indicators", _safe_symbol(symbol))

    def _stamp(self) -> str:
        return datetime.fromtimestamp(self._clock()).strftime("%Y%m%d_%H%M%S_%f")

    def write_series(self, symbol: str, bars: List[Bar]) -> str:
        """写入完整序列，返回文件路径"""
        written_at = self._clock()
        df = pd.DataFrame(
            [
                {
                    "symbol": b.symbol,
                    "date": b.date.isoformat(),
                    "open": round(b.open, 4),
                    "high": round(b.high, 4),
                    "low": round(b.low, 4),
                    "close": round(b.close, 4),
                    "volume": b.volume,
                    "timestamp": written_at,
                }
                for b in bars
            ],
            columns=_SERIES_COLUMNS,
        )
        safe = _safe_symbol(symbol)
        filename = f"{safe}_market_data_{len(bars)}_records_{self._stamp()}.csv"
        path = os.path.join(self._market_dir(symbol), filename)
        _atomic_write_csv(df, path)
        return path

    def find_latest(self, symbol: str, min_records: int) -> Optional[str]:
        """查找记录数不少于 min_records 的最新文件"""
        directory = self._market_dir(symbol)
        if not os.path.isdir(directory):
            return None
        best: Optional[Tuple[str, str]] = None
        for name in os.listdir(directory):
            match = _SERIES_FILE_RE.match(name)
            if not match or int(match.group("records")) < min_records:
                continue
            stamp = match.group("stamp")
            if best is None or stamp > best[0]:
                best = (stamp, os.path.join(directory, name))
        return best[1] if best else None

    def read_series(self, path: str) -> Tuple[List[Bar], float]:
        """读取文件，返回 (bars, 写入时间戳)"""
        # 代码如 "NA" / "NULL" 不能被解析成缺失值
        df = pd.read_csv(path, dtype={"symbol": str, "date": str}, keep_default_na=False)
        if df.empty:
            raise ValueError(f"CSV 文件无数据: {path}")
        missing = [c for c in _SERIES_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"CSV 文件缺少列 {missing}: {path}")
        written_at = float(df["timestamp"].iloc[0])
        symbol = str(df["symbol"].iloc[0])
        bars = self._proc.normalize_bars(df.drop(columns=["timestamp"]).to_dict("records"), symbol)
        return bars, written_at

    def load_latest(self, symbol: str, min_records: int) -> Optional[Tuple[List[Bar], float]]:
        path = self.find_latest(symbol, min_records)
        if path is None:
            return None
        return self.read_series(path)

    def write_indicators(self, symbol: str, batch: IndicatorBatch) -> Optional[str]:
        """将指标结果按日期对齐写入 CSV，列名按字母排序"""
        columns: Dict[str, pd.Series] = {}
        for name in sorted(batch.results):
            series = batch.results[name]
            columns[name] = pd.Series(
                [p.value for p in series.points],
                index=[p.date.isoformat() for p in series.points],
                dtype="float64",
            )
        if not columns:
            return None
        df = pd.DataFrame(columns).sort_index()
        df.index.name = "Date"
        df = df.round(6).reset_index()
        path = os.path.join(
            self._indicator_dir(symbol), f"{_safe_symbol(symbol)}_indicators_{self._stamp()}.csv"
        )
        _atomic_write_csv(df, path)
        return path

    def clean_old_files(self, max_age: float) -> int:
        """删除修改时间早于 max_age 秒的 CSV 文件"""
        now = self._clock()
        removed = 0
        for sub in ("market", "indicators"):
            root = os.path.join(self.base_path, "csv", sub)
            if not os.path.isdir(root):
                continue
            for dirpath, _, filenames in os.walk(root):
                for name in filenames:
                    if not name.endswith(".csv") or name.startswith(".tmp_"):
                        continue
                    path = os.path.join(dirpath, name)
                    try:
                        if now - os.path.getmtime(path) <= max_age:
                            continue
                        os.remove(path)
                    except FileNotFoundError:
                        continue
                    except OSError as exc:
                        logger.warning(f"CSV 文件清理失败 {path}: {exc}")
                        continue
                    removed += 1
        return removed


# ── 两级缓存 ──────────────────────────────────────────────

@dataclass
class CachedSeries:
    bars: List[Bar]
    symbol: str
    count: int
    timestamp: float
    ttl: float


PersistObserver = Callable[[str, int, Optional[BaseException]], None]


class MarketSeriesCache:
    """
    行情序列两级缓存

    get 永远不会返回少于 count 根的序列；数据不足按未命中处理，由调用方重新拉取。
    set 在写锁内更新内存层，释放锁后由后台任务写 CSV，失败只记录日志。
    """

    def __init__(
        self,
        store: SeriesStore,
        memory_ttl: float = 300,
        durable_stale_after: float = 1800,
        max_entries: int = 0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
        on_persisted: Optional[PersistObserver] = None,
    ):
        self.store = store
        self.memory_ttl = memory_ttl
        self.durable_stale_after = durable_stale_after
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._on_persisted = on_persisted
        self._memory: "OrderedDict[str, CachedSeries]" = OrderedDict()
        self._lock = AsyncReadWriteLock()
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def _key(symbol: str, count: int) -> str:
        return f"{symbol}-{count}"

    def _fresh(self, entry: CachedSeries) -> bool:
        return self._clock() - entry.timestamp <= entry.ttl

    def _put(self, key: str, entry: CachedSeries) -> None:
        self._memory[key] = entry
        self._memory.move_to_end(key)
        if self.max_entries > 0:
            while len(self._memory) > self.max_entries:
                evicted, _ = self._memory.popitem(last=False)
                logger.debug(f"内存缓存超出上限，淘汰 {evicted}")

    async def get(self, symbol: str, count: int) -> Tuple[Optional[List[Bar]], bool]:
        """
        先查内存层，再查 CSV 层

        注意：CSV 层命中时提升的是文件中按日期升序的前 count 根。若文件由更长的请求写入
        （例如技术分析拉取的 280 根），较短请求拿到的是其中最早的一段而不是最近的 count 根。
        """
        if not self.enabled:
            return None, False
        key = self._key(symbol, count)

        # 1. 内存层
        expired = False
        async with self._lock.read():
            entry = self._memory.get(key)
            if entry is not None:
                if self._fresh(entry) and len(entry.bars) >= count:
                    logger.debug(f"缓存命中（内存）: {symbol} (count: {count})")
                    hit = entry.bars
                else:
                    hit, expired = None, True
            else:
                hit = None
        if hit is not None:
            if self.max_entries > 0:
                async with self._lock.write():
                    if key in self._memory:
                        self._memory.move_to_end(key)
            return hit, True
        if expired:
            async with self._lock.write():
                current = self._memory.get(key)
                if current is not None and not self._fresh(current):
                    del self._memory[key]

        # 2. CSV 持久层
        try:
            loaded = await asyncio.to_thread(self.store.load_latest, symbol, count)
        except Exception as exc:
            logger.warning(f"CSV 缓存读取失败 {symbol}: {exc}")
            return None, False
        if loaded is None:
            return None, False

        bars, written_at = loaded
        age = self._clock() - written_at
        if age > self.durable_stale_after:
            logger.debug(f"CSV 缓存已过期 {symbol} (age: {age:.0f}s)")
            return None, False
        if len(bars) < count:
            logger.debug(f"CSV 缓存数据不足 {symbol} (has: {len(bars)}, need: {count})")
            return None, False

        promoted = bars[:count]
        async with self._lock.write():
            self._put(key, CachedSeries(promoted, symbol, count, self._clock(), self.memory_ttl))
        logger.debug(f"缓存命中（CSV）: {symbol} (count: {count})")
        return promoted, True

    async def set(self, symbol: str, count: int, bars: List[Bar]) -> None:
        if not self.enabled:
            return
        key = self._key(symbol, count)
        snapshot = list(bars)
        async with self._lock.write():
            self._put(key, CachedSeries(snapshot, symbol, count, self._clock(), self.memory_ttl))
        logger.debug(f"写入内存缓存: {symbol} (count: {count})")

        task = asyncio.create_task(self._persist(symbol, count, snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, symbol: str, count: int, bars: List[Bar]) -> None:
        error: Optional[BaseException] = None
        try:
            path = await asyncio.to_thread(self.store.write_series, symbol, bars)
            logger.debug(f"CSV 缓存写入成功 {symbol} (count: {count}): {os.path.basename(path)}")
        except Exception as exc:
            error = exc
            logger.warning(f"CSV 缓存写入失败 {symbol}: {exc}")
        if self._on_persisted is not None:
            try:
                self._on_persisted(symbol, count, error)
            except Exception as exc:
                logger.warning(f"持久化回调异常: {exc}")

    async def flush(self) -> None:
        """等待所有后台持久化任务完成"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def clear(self) -> None:
        async with self._lock.write():
            self._memory = OrderedDict()
        logger.info("内存缓存已清空")

    async def warmup(self, symbols: Iterable[str], counts: Iterable[int]) -> int:
        """从 CSV 层预热内存缓存，返回命中数量"""
        counts = list(counts)
        warmed = 0
        for symbol in symbols:
            for count in counts:
                _, found = await self.get(symbol, count)
                if found:
                    warmed += 1
                    logger.info(f"缓存预热完成 {symbol} (count: {count})")
        return warmed

    def cleanup_expired(self, max_age: float) -> int:
        removed = self.store.clean_old_files(max_age)
        if removed:
            logger.info(f"CSV 缓存清理完成，删除 {removed} 个文件")
        return removed

    def save_indicators(self, symbol: str, batch: IndicatorBatch) -> Optional[str]:
        return self.store.write_indicators(symbol, batch)

    def stats(self) -> dict:
        return {
            "memory_cache_size": len(self._memory),
            "memory_cache_keys": list(self._memory.keys()),
            "pending_writes": len(self._pending),
            "base_path": self.store.base_path,
            "status": "healthy" if self.enabled else "disabled",
        }
