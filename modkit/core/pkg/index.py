"""本地索引账本

每个管理根目录（本地 mods 目录 / 全局共享目录）各有一份账本，
记录已安装 (mods) 与已链接 (linked) 的包。

持久化语义:
  - 不在对象销毁时自动保存
  - 通过 open_index() 获取：加文件锁 → 读取 → 修改 → 正常退出时显式提交
  - 代码块抛异常时丢弃修改，不写盘，异常继续向上传播
  - 提交失败对整个命令是致命的
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import yaml
from filelock import FileLock, Timeout

from modkit.core.exceptions import ConfigError, IndexLockedError, NotFoundError
from modkit.core.models import LocalPackage, SubPackage, canonical_key
from modkit.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)


class LocalIndex:
    """单个管理根目录的已安装包账本"""

    def __init__(
        self,
        path: str | Path,
        mods: dict[str, LocalPackage] | None = None,
        linked: dict[str, LocalPackage] | None = None,
    ) -> None:
        self.path = Path(path)
        self.mods: dict[str, LocalPackage] = mods or {}
        self.linked: dict[str, LocalPackage] = linked or {}
        self._saved = self._snapshot()

    # ---- 加载 / 保存 ----

    @classmethod
    def load(cls, path: str | Path) -> LocalIndex:
        """加载已有索引文件，不存在时抛出 NotFoundError"""
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"索引文件不存在: {path}")
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"索引文件损坏: {path}: {e}") from e
        try:
            mods = {
                canonical_key(k): LocalPackage.from_dict(v)
                for k, v in (data.get("mods") or {}).items()
            }
            linked = {
                canonical_key(k): LocalPackage.from_dict(v)
                for k, v in (data.get("linked") or {}).items()
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"索引文件结构无效: {path}: {e}") from e
        logger.debug("索引已加载: %s (%d mods, %d linked)", path, len(mods), len(linked))
        return cls(path, mods, linked)

    @classmethod
    def load_or_create(cls, path: str | Path) -> LocalIndex:
        """加载索引，文件不存在时返回空索引（不立即写盘）"""
        try:
            return cls.load(path)
        except NotFoundError:
            logger.debug("索引不存在，新建: %s", path)
            return cls(path)

    def _snapshot(self) -> dict:
        return {
            "mods": {k: v.to_dict() for k, v in sorted(self.mods.items())},
            "linked": {k: v.to_dict() for k, v in sorted(self.linked.items())},
        }

    @property
    def dirty(self) -> bool:
        """自加载 / 上次保存以来内容是否有变化"""
        return self._snapshot() != self._saved

    def save(self) -> None:
        """序列化整个账本，自动创建父目录，原子写入"""
        data = self._snapshot()
        save_yaml(self.path, data)
        self._saved = data
        logger.debug("索引已保存: %s", self.path)

    @property
    def root(self) -> Path:
        """账本所在的管理根目录"""
        return self.path.parent

    # ---- 查询 ----

    def get_package(self, name: str) -> LocalPackage | None:
        """先查 mods 再查 linked"""
        key = canonical_key(name)
        return self.mods.get(key) or self.linked.get(key)

    def get_subpackage(self, name: str) -> SubPackage | None:
        """跨所有包按子包名线性查找"""
        key = canonical_key(name)
        for pkg in self.packages():
            for sub in pkg.subpackages:
                if canonical_key(sub.name) == key:
                    return sub
        return None

    def owner_of(self, sub: SubPackage) -> LocalPackage | None:
        for pkg in self.packages():
            if any(s is sub for s in pkg.subpackages):
                return pkg
        return None

    def packages(self) -> Iterator[LocalPackage]:
        yield from self.mods.values()
        yield from self.linked.values()

    # ---- 存储层修改 ----

    def insert(self, pkg: LocalPackage, *, linked: bool = False) -> None:
        """插入或替换；同一包名只能出现在 mods / linked 其中之一"""
        key = pkg.key
        if linked:
            self.mods.pop(key, None)
            self.linked[key] = pkg
        else:
            self.linked.pop(key, None)
            self.mods[key] = pkg

    def remove(self, name: str) -> LocalPackage | None:
        key = canonical_key(name)
        return self.mods.pop(key, None) or self.linked.pop(key, None)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get_package(name) is not None

    def __repr__(self) -> str:
        return f"LocalIndex({self.path}, mods={len(self.mods)}, linked={len(self.linked)})"


def lock_path_for(index_path: Path) -> Path:
    return index_path.with_name(index_path.name + ".lock")


@contextmanager
def open_index(
    path: str | Path,
    *,
    create: bool = True,
    timeout: float = 10.0,
) -> Iterator[LocalIndex]:
    """独占打开账本: 加锁 → 读取 → yield → 正常退出时提交

    代码块抛出异常时不写盘（丢弃修改）；内容未变化时也不写盘。
    create=False 时索引必须已存在。

    Raises:
        IndexLockedError: 超时仍未获得锁
        NotFoundError: create=False 且索引不存在
    """
    path = Path(path)
    if not create and not path.exists():
        raise NotFoundError(f"索引文件不存在: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    lock = FileLock(str(lock_path_for(path)), timeout=timeout)
    try:
        lock.acquire()
    except Timeout as e:
        raise IndexLockedError(f"索引正被其他进程使用: {path}") from e
    try:
        index = LocalIndex.load_or_create(path) if create else LocalIndex.load(path)
        yield index
        if index.dirty:
            index.save()
    finally:
        lock.release()
