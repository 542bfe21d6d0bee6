"""
Layer 2a – 通用持久化缓存
按 (namespace, method, params) 生成内容哈希键，每个键一个 JSON 文件，按 TTL 过期
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from typing import Any, Callable, Optional, Tuple

from market_data_service.errors import CacheIOError, ParseError

logger = logging.getLogger(__name__)


def _canonical(params: Any) -> str:
    """参数规范化：键排序的 JSON，保证同一参数得到同一哈希"""
    return json.dumps(params, sort_keys=True, ensure_ascii=False, default=str)


def _make_key(namespace: str, method: str, params: Any) -> str:
    """生成规范化缓存键"""
    raw = json.dumps([namespace, method, _canonical(params)], ensure_ascii=False)
    digest = hashlib.md5(raw.encode("utf-8")).hexdigest()
    return f"{namespace}_{method}_{digest}"


class PersistentCache:
    """
    文件型 TTL 缓存

    - get 读到过期条目时删除文件并返回未命中
    - 内容损坏按未命中处理，同时删除坏文件
    - set 先写临时文件再 os.replace，读方不会看到半截内容
    - enabled=False 时 get 恒未命中、set 为空操作
    """

    def __init__(
        self,
        cache_dir: str,
        ttl: float,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = cache_dir
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock

    def _file_path(self, key: str) -> str:
        safe = key.replace(":", "_").replace("/", "_")
        return os.path.join(self.cache_dir, f"{safe}.json")

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"缓存文件删除失败 {path}: {exc}")

    @staticmethod
    def _decode(raw: str) -> dict:
        try:
            doc = json.loads(raw)
        except ValueError as exc:
            raise ParseError(str(exc)) from exc
        if not isinstance(doc, dict) or "value" not in doc or "created_at" not in doc:
            raise ParseError("缓存文件缺少 value / created_at 字段")
        return doc

    def get(self, namespace: str, method: str, params: Any) -> Tuple[Optional[Any], bool]:
        if not self.enabled:
            return None, False

        key = _make_key(namespace, method, params)
        path = self._file_path(key)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = fh.read()
        except FileNotFoundError:
            return None, False
        except OSError as exc:
            logger.warning(f"文件缓存读取失败 {key}: {exc}")
            return None, False

        try:
            doc = self._decode(raw)
        except ParseError as exc:
            logger.warning(f"文件缓存内容损坏，已删除 {key}: {exc}")
            self._remove(path)
            return None, False

        ttl = doc.get("ttl", self.ttl)
        if self._clock() - float(doc["created_at"]) > ttl:
            logger.debug(f"文件缓存已过期: {key}")
            self._remove(path)
            return None, False

        logger.debug(f"缓存命中（文件）: {key}")
        return doc["value"], True

    def set(
        self,
        namespace: str,
        method: str,
        params: Any,
        value: Any,
        ttl: Optional[float] = None,
    ) -> None:
        if not self.enabled:
            return

        key = _make_key(namespace, method, params)
        doc = {
            "key": key,
            "namespace": namespace,
            "method": method,
            "created_at": self._clock(),
            "ttl": self.ttl if ttl is None else ttl,
            "value": value,
        }
        try:
            payload = json.dumps(doc, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise CacheIOError(f"缓存值无法序列化 {key}: {exc}") from exc

        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".tmp_", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_path, self._file_path(key))
            except BaseException:
                self._remove(tmp_path)
                raise
        except OSError as exc:
            raise CacheIOError(f"文件缓存写入失败 {key}: {exc}") from exc
        logger.debug(f"缓存写入（文件）: {key}")

    def delete(self, namespace: str, method: str, params: Any) -> bool:
        path = self._file_path(_make_key(namespace, method, params))
        if not os.path.exists(path):
            return False
        self._remove(path)
        return True

    def cleanup(self, max_age: Optional[float] = None) -> int:
        """删除早于 max_age（默认 TTL）的缓存文件，返回删除数量"""
        if not os.path.isdir(self.cache_dir):
            return 0
        limit = self.ttl if max_age is None else max_age
        now = self._clock()
        removed = 0
        for name in os.listdir(self.cache_dir):
            if not name.endswith(".json") or name.startswith(".tmp_"):
                continue
            path = os.path.join(self.cache_dir, name)
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    created_at = float(self._decode(fh.read())["created_at"])
            except (OSError, ParseError, TypeError, ValueError):
                created_at = float("-inf")
            if now - created_at > limit:
                self._remove(path)
                removed += 1
        if removed:
            logger.info(f"文件缓存清理完成，删除 {removed} 个文件")
        return removed

    def stats(self) -> dict:
        """返回文件缓存统计信息"""
        try:
            file_count = len([
                f for f in os.listdir(self.cache_dir)
                if f.endswith(".json") and not f.startswith(".tmp_")
            ]) if os.path.exists(self.cache_dir) else 0
            return {
                "files": file_count,
                "dir": self.cache_dir,
                "ttl": self.ttl,
                "status": "healthy" if self.enabled else "disabled",
            }
        except OSError as exc:
            return {"status": "error", "error": str(exc)}
