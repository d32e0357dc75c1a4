"""已安装包管理服务

remove / enable / disable / link / unlink / list / export / import / clear-cache。
所有写操作都通过 open_index 加锁，代码块正常结束才提交账本。
同时打开全局与 profile 账本时固定先全局后 profile，避免互相等待。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from modkit.core.exceptions import ValidationError
from modkit.core.models import LocalPackage, PackageName, SubPackage, canonical_key
from modkit.core.pkg import toggler
from modkit.core.pkg.cache import PackageCache
from modkit.core.pkg.index import LocalIndex, open_index
from modkit.core.pkg.installer import uninstall
from modkit.core.pkg.linker import link_package, unlink_package
from modkit.core.pkg.resolver import DependencyResolver
from modkit.services.report import (
    DISABLED,
    ENABLED,
    FAILED,
    LINKED,
    REMOVED,
    SKIPPED,
    UNLINKED,
    BatchReport,
)
from modkit.utils.yaml_io import load_yaml_list, save_yaml

logger = logging.getLogger(__name__)


class PackageService:
    """本地 / 全局已安装包的维护操作"""

    def __init__(
        self,
        local_root: str | Path,
        global_root: str | Path,
        cache: PackageCache,
        resolver: DependencyResolver,
        index_file: str = ".modkit.yml",
        lock_timeout: float = 10.0,
    ) -> None:
        self.local_root = Path(local_root)
        self.global_root = Path(global_root)
        self.cache = cache
        self.resolver = resolver
        self.index_file = index_file
        self.lock_timeout = lock_timeout

    def root_for(self, global_: bool = False) -> Path:
        return self.global_root if global_ else self.local_root

    def index_path(self, root: str | Path) -> Path:
        return Path(root) / self.index_file

    def _open(self, root: Path, create: bool = False):
        return open_index(self.index_path(root), create=create, timeout=self.lock_timeout)

    # ---- 删除 ----

    def remove(self, names: list[str], *, global_: bool = False, force: bool = False) -> BatchReport:
        """删除包的全部子包目录并从账本移除

        linked 条目按取消链接处理；仍被 profile 链接的全局包需要 force。
        """
        root = self.root_for(global_)
        report = BatchReport()
        linked_names: list[str] = []
        with self._open(root) as index:
            for name in names:
                key = canonical_key(name)
                if key in index.linked:
                    linked_names.append(name)
                    continue
                pkg = index.mods.get(key)
                if pkg is None:
                    logger.warning("未安装: %s", name)
                    report.add(name, FAILED, message="未安装")
                    continue
                if pkg.linked_by and not force:
                    report.add(
                        pkg.package_name, FAILED, pkg.version,
                        f"仍被 {len(pkg.linked_by)} 个 profile 链接，使用 --force 强制删除",
                    )
                    continue
                try:
                    uninstall([root / p for p in pkg.flatten_paths()])
                except OSError as e:
                    logger.exception("删除失败: %s", pkg.package_name)
                    report.add(pkg.package_name, FAILED, pkg.version, str(e))
                    continue
                index.remove(key)
                for other in index.mods.values():
                    if key in other.needed_by:
                        other.needed_by.remove(key)
                logger.info("已删除 %s", pkg.package_name)
                report.add(pkg.package_name, REMOVED, pkg.version)
        if linked_names:
            report.results.extend(self.unlink(linked_names, root).results)
        return report

    # ---- 启用 / 禁用 ----

    def enable(self, names: list[str], *, global_: bool = False) -> BatchReport:
        return self._toggle(names, global_, enabling=True)

    def disable(self, names: list[str], *, global_: bool = False) -> BatchReport:
        return self._toggle(names, global_, enabling=False)

    def _toggle(self, names: list[str], global_: bool, enabling: bool) -> BatchReport:
        root = self.root_for(global_)
        action = toggler.enable if enabling else toggler.disable
        done = ENABLED if enabling else DISABLED
        report = BatchReport()
        with self._open(root) as index:
            for name in names:
                targets = _toggle_targets(index, name)
                if not targets:
                    logger.warning("找不到包或子包: %s", name)
                    report.add(name, FAILED, message="找不到包或子包")
                    continue
                for sub in targets:
                    try:
                        changed = action(root, sub)
                    except OSError as e:
                        logger.exception("切换失败: %s", sub.name)
                        report.add(sub.name, FAILED, message=str(e))
                        continue
                    report.add(sub.name, done if changed else SKIPPED)
        return report

    # ---- 链接 ----

    def link(
        self,
        names: list[str],
        profile_root: str | Path | None = None,
        *,
        force: bool = False,
    ) -> BatchReport:
        """把全局安装的包硬链接到 profile"""
        profile_root = Path(profile_root) if profile_root else self.local_root
        profile_root.mkdir(parents=True, exist_ok=True)
        report = BatchReport()
        with self._open(self.global_root) as global_index, \
                self._open(profile_root, create=True) as profile:
            for name in names:
                key = canonical_key(name)
                pkg = global_index.mods.get(key)
                if pkg is None:
                    logger.warning("未全局安装: %s", name)
                    report.add(name, FAILED, message="未全局安装")
                    continue
                if key in profile.linked and not force:
                    report.add(pkg.package_name, SKIPPED, pkg.version, "已链接")
                    continue
                if key in profile.mods:
                    report.add(pkg.package_name, FAILED, pkg.version, "profile 中已有本地安装")
                    continue
                try:
                    entry = link_package(pkg, self.global_root, profile_root)
                except OSError as e:
                    logger.exception("链接失败: %s", pkg.package_name)
                    report.add(
                        pkg.package_name, FAILED, pkg.version,
                        f"无法在 {profile_root} 创建链接，是否存在同名文件? {e}",
                    )
                    continue
                profile.insert(entry, linked=True)
                report.add(pkg.package_name, LINKED, pkg.version)
        return report

    def unlink(self, names: list[str], profile_root: str | Path | None = None) -> BatchReport:
        """删除 profile 中的链接并更新全局副本的 linked_by"""
        profile_root = Path(profile_root) if profile_root else self.local_root
        report = BatchReport()
        with self._open(self.global_root, create=True) as global_index, \
                self._open(profile_root) as profile:
            for name in names:
                key = canonical_key(name)
                linked = profile.linked.get(key)
                if linked is None:
                    logger.warning("%s 未链接到 %s", name, profile.root)
                    report.add(name, FAILED, message="未链接到当前目录")
                    continue
                try:
                    unlink_package(linked, profile.root, global_index.mods.get(key))
                except OSError as e:
                    logger.exception("取消链接失败: %s", name)
                    report.add(linked.package_name, FAILED, linked.version, str(e))
                    continue
                profile.linked.pop(key)
                report.add(linked.package_name, UNLINKED, linked.version)
        return report

    # ---- 查询 / 导入导出 ----

    def list_installed(self, *, global_: bool = False) -> list[dict[str, Any]]:
        """只读查询，不加锁"""
        index = LocalIndex.load_or_create(self.index_path(self.root_for(global_)))
        rows = []
        for linked, table in ((False, index.mods), (True, index.linked)):
            for pkg in sorted(table.values(), key=lambda p: p.key):
                rows.append({
                    "name": pkg.package_name,
                    "author": pkg.author,
                    "version": pkg.version,
                    "linked": linked,
                    "linked_by": list(pkg.linked_by),
                    "subpackages": [
                        {"name": s.name, "path": s.path.as_posix(), "disabled": s.disabled}
                        for s in pkg.subpackages
                    ],
                })
        return rows

    def export_list(self, file: str | Path, *, global_: bool = False) -> list[str]:
        """把已安装包写为 author.name@version 列表（YAML），排除的命名空间不导出"""
        index = LocalIndex.load_or_create(self.index_path(self.root_for(global_)))
        names = []
        for pkg in sorted(index.mods.values(), key=lambda p: p.key):
            if not pkg.author:
                logger.warning("%s 缺少作者信息，无法导出", pkg.package_name)
                continue
            if canonical_key(pkg.author) in self.resolver.exclude_namespaces:
                continue
            names.append(str(PackageName(pkg.author, pkg.package_name, pkg.version)))
        save_yaml(file, names)
        logger.info("已导出 %d 个包到 %s", len(names), file)
        return names

    def import_list(self, file: str | Path) -> list[PackageName]:
        """读取导出的包列表，无法解析的条目记录警告后跳过"""
        try:
            raw = load_yaml_list(file)
        except (yaml.YAMLError, ValueError) as e:
            raise ValidationError(f"无法解析包列表 {file}: {e}") from e
        names = []
        for item in raw:
            try:
                names.append(PackageName.parse(str(item)))
            except ValidationError:
                logger.warning("跳过无效条目: %s", item)
        return names

    def clear_cache(self, *, full: bool = False) -> int:
        return self.cache.clear(full=full)


def _toggle_targets(index: LocalIndex, name: str) -> list[SubPackage]:
    """按包名取全部子包，否则按子包名取单个"""
    pkg: LocalPackage | None = index.get_package(name)
    if pkg is not None:
        return list(pkg.subpackages)
    sub = index.get_subpackage(name)
    return [sub] if sub is not None else []

