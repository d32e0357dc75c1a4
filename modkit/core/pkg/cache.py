"""归档缓存

职责:
- 扫描缓存目录，建立 (name, version) -> 归档路径 的内存表
- 缓存命中检查（精确版本 / 任意版本取最新）
- 安装成功后淘汰同名旧版本，使每个包最多保留一个归档

缓存没有独立的持久化形式，每次命令运行时重新扫描目录。
文件名格式: {name}_{version}.zip 或 {name}-{version}.zip
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from modkit.core.exceptions import NotFoundError
from modkit.core.models import CacheEntry, canonical_key, parse_version

logger = logging.getLogger(__name__)

_CACHE_NAME_RE = re.compile(r"^(?P<name>.+?)[_-](?P<version>\d+(?:\.\d+)*)(?:\.zip)?$")


def parse_cache_filename(filename: str) -> tuple[str, str] | None:
    """解析缓存文件名，返回 (name, version)，不匹配时返回 None"""
    m = _CACHE_NAME_RE.match(filename)
    if m is None:
        return None
    return m.group("name").strip(), m.group("version").strip()


class PackageCache:
    """下载归档缓存管理器"""

    def __init__(self, cache_dir: Path, entries: list[CacheEntry] | None = None) -> None:
        self.cache_dir = Path(cache_dir)
        self._entries: list[CacheEntry] = entries or []

    @classmethod
    def build(cls, cache_dir: str | Path) -> PackageCache:
        """非递归扫描缓存目录；无法解析的文件名记录警告后跳过"""
        cache_dir = Path(cache_dir)
        if not cache_dir.is_dir():
            raise NotFoundError(f"缓存目录不存在: {cache_dir}")

        entries: list[CacheEntry] = []
        for path in sorted(cache_dir.iterdir()):
            if path.is_dir():
                continue
            parsed = parse_cache_filename(path.name)
            if parsed is None:
                logger.warning("缓存目录中存在无法识别的文件: %s", path.name)
                continue
            name, version = parsed
            entries.append(CacheEntry(name=name, version=version, path=path))
            logger.debug("缓存载入: %s@%s -> %s", name, version, path)
        return cls(cache_dir, entries)

    def entries(self) -> list[CacheEntry]:
        return list(self._entries)

    def path_for(self, name: str, version: str) -> Path:
        """新下载归档应写入的位置"""
        return self.cache_dir / f"{name}_{version}.zip"

    def add(self, name: str, version: str, path: Path) -> None:
        """登记一次新下载的归档"""
        self._entries = [
            e for e in self._entries
            if not (e.key == canonical_key(name) and e.version == version)
        ]
        self._entries.append(CacheEntry(name=name, version=version, path=Path(path)))

    def get(self, name: str, version: str) -> Path | None:
        """精确匹配 name@version"""
        key = canonical_key(name)
        for e in self._entries:
            if e.key == key and e.version == version.strip():
                return e.path if e.path.exists() else None
        return None

    def get_any(self, name: str) -> Path | None:
        """返回该包版本号最大的缓存归档，忽略请求版本"""
        key = canonical_key(name)
        candidates = [e for e in self._entries if e.key == key and e.path.exists()]
        if not candidates:
            return None
        best = max(candidates, key=lambda e: parse_version(e.version))
        return best.path

    def clean(self, name: str, keep_version: str) -> bool:
        """删除 name 的所有非 keep_version 缓存归档

        删除失败时抛出 OSError，但不回滚触发清理的安装。
        """
        key = canonical_key(name)
        keep_version = keep_version.strip()
        changed = False
        kept = False
        for e in list(self._entries):
            if e.key != key:
                continue
            # 同版本的 name_x 与 name-x 两种命名也只保留一个
            if e.version == keep_version and not kept:
                kept = True
                continue
            if e.path.exists():
                logger.debug("淘汰旧缓存: %s", e.path)
                e.path.unlink()
            self._entries.remove(e)
            changed = True
        if changed:
            logger.info("已清理 %s 的旧缓存，保留版本 %s", name, keep_version)
        return changed

    def clear(self, full: bool = False) -> int:
        """清空缓存目录：默认只删 .zip，full=True 时删除全部文件，返回删除数"""
        removed = _clear_dir(self.cache_dir, full)
        self._entries = []
        logger.info("缓存已清空: %s (%d 个文件)", self.cache_dir, removed)
        return removed


def _clear_dir(directory: Path, full: bool) -> int:
    removed = 0
    for path in directory.iterdir():
        if path.is_dir():
            removed += _clear_dir(path, full)
            if not any(path.iterdir()):
                path.rmdir()
        elif path.suffix == ".zip" or full:
            path.unlink()
            removed += 1
    return removed
