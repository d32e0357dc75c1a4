"""安装服务

流程:
  1. 拉取远端索引，逐个解析请求的包名（可带版本）
  2. 有包找不到时，除非 force，否则整个请求中止
  3. 展开依赖（传递闭包），依赖取最新版本
  4. 跳过已安装且版本相同的包
  5. 确认后逐包: 获取归档 → 安装 → 写入账本 → 清理旧缓存
  6. 回填 needed_by

单个包失败不回滚之前成功的包；force 时继续后续包，否则停止。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path

from modkit.core.exceptions import ModkitError, NotFoundError, ValidationError
from modkit.core.models import (
    LocalPackage,
    PackageName,
    RemotePackage,
    RemoteVersion,
    canonical_key,
    to_file_size_string,
)
from modkit.core.pkg.cache import PackageCache
from modkit.core.pkg.index import LocalIndex, open_index
from modkit.core.pkg.installer import install_archive
from modkit.core.pkg.linker import unlink_package
from modkit.core.pkg.resolver import DependencyResolver, split_specifier
from modkit.services.fetcher import ArchiveFetcher
from modkit.services.registry_client import RegistryClient, find_package
from modkit.services.report import FAILED, INSTALLED, SKIPPED, BatchReport
from modkit.services.update_service import merge_update

logger = logging.getLogger(__name__)


@dataclass
class InstallItem:
    """计划安装的单个包"""

    package: RemotePackage
    version: RemoteVersion
    pinned: bool = False
    dependency: bool = False

    @property
    def label(self) -> str:
        return f"{self.package.author}.{self.package.name}@{self.version.version}"


@dataclass
class InstallPlan:
    items: list[InstallItem]
    missing: list[str]

    @property
    def total_size(self) -> int:
        return sum(i.version.file_size for i in self.items)

    def total_size_string(self) -> str:
        return to_file_size_string(self.total_size)


ConfirmCallback = Callable[[InstallPlan], bool]


class InstallService:
    """从远端注册表安装包到本地或全局目录"""

    def __init__(
        self,
        registry: RegistryClient,
        fetcher: ArchiveFetcher,
        resolver: DependencyResolver,
        cache: PackageCache,
        local_root: str | Path,
        global_root: str | Path,
        index_file: str = ".modkit.yml",
        lock_timeout: float = 10.0,
    ) -> None:
        self.registry = registry
        self.fetcher = fetcher
        self.resolver = resolver
        self.cache = cache
        self.local_root = Path(local_root)
        self.global_root = Path(global_root)
        self.index_file = index_file
        self.lock_timeout = lock_timeout

    def plan(
        self,
        names: list[str],
        remote_index: list[RemotePackage],
    ) -> InstallPlan:
        """解析包名与依赖，生成安装计划（不做任何修改）

        Raises:
            DependencyError: 某个依赖无法解析
        """
        items: list[InstallItem] = []
        missing: list[str] = []
        seen: set[str] = set()

        for raw in names:
            try:
                name = PackageName.parse(raw)
            except ValidationError:
                logger.warning("无效的包名: %s", raw)
                missing.append(raw)
                continue
            pkg = find_package(remote_index, name)
            if pkg is None:
                logger.warning("找不到包: %s", name)
                missing.append(raw)
                continue
            version = pkg.get_version(name.version) if name.version else pkg.get_latest()
            if version is None:
                logger.warning("包 %s 没有版本 %s", pkg.name, name.version or pkg.latest)
                missing.append(raw)
                continue
            if pkg.key in seen:
                continue
            seen.add(pkg.key)
            items.append(InstallItem(pkg, version, pinned=name.version is not None))

        specifiers = [dep for item in items for dep in item.version.dependencies]
        for dep in self.resolver.resolve(specifiers, remote_index):
            latest = dep.get_latest()
            if dep.key in seen or latest is None:
                continue
            seen.add(dep.key)
            items.append(InstallItem(dep, latest, dependency=True))

        return InstallPlan(items=items, missing=missing)

    def install(
        self,
        names: list[str],
        *,
        yes: bool = False,
        force: bool = False,
        global_: bool = False,
        use_cache: bool | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> BatchReport:
        """安装一组包，返回逐包结果

        Raises:
            NotFoundError: 有包找不到且未指定 force
            DependencyError: 依赖无法解析
            NetworkError: 远端索引获取失败
        """
        if use_cache is not None:
            self.fetcher.use_cache = use_cache
        remote_index = self.registry.fetch_index()
        plan = self.plan(names, remote_index)

        report = BatchReport()
        if plan.missing:
            if not force:
                raise NotFoundError(f"找不到以下包，操作中止: {', '.join(plan.missing)}")
            for raw in plan.missing:
                report.add(raw, FAILED, message="注册表中不存在")

        root = self.global_root if global_ else self.local_root
        root.mkdir(parents=True, exist_ok=True)
        index_path = root / self.index_file
        global_path = self.global_root / self.index_file

        with ExitStack() as stack:
            # 本地安装可能替换 linked 条目，需要同时改写全局副本的 linked_by；先全局后本地
            global_index = None
            if not global_ and global_path.exists() and self.global_root.resolve() != root.resolve():
                global_index = stack.enter_context(
                    open_index(global_path, create=False, timeout=self.lock_timeout)
                )
            index = stack.enter_context(open_index(index_path, timeout=self.lock_timeout))
            pending = []
            for item in plan.items:
                current = index.mods.get(item.package.key)
                if current is not None and current.version == item.version.version:
                    logger.info("%s 已安装，跳过", item.label)
                    report.add(item.package.name, SKIPPED, item.version.version, "已安装")
                    continue
                pending.append(item)

            if not pending:
                return report
            if not yes and confirm is not None and not confirm(InstallPlan(pending, plan.missing)):
                logger.info("用户取消安装")
                report.aborted = True
                return report

            for item in pending:
                try:
                    self._install_one(item, index, root, global_index)
                except (ModkitError, OSError) as e:
                    logger.exception("安装失败: %s", item.label)
                    report.add(item.package.name, FAILED, item.version.version, str(e))
                    if not force:
                        break
                    continue
                report.add(item.package.name, INSTALLED, item.version.version)

            _link_dependents(index)
        return report

    def _install_one(
        self,
        item: InstallItem,
        index: LocalIndex,
        root: Path,
        global_index: LocalIndex | None = None,
    ) -> LocalPackage:
        archive = self.fetcher.fetch(item.package, item.version, pinned=item.pinned)
        key = item.package.key
        linked = index.linked.get(key)
        if linked is not None:
            logger.info("%s 当前链接自全局目录，改为本地安装", item.package.name)
            global_pkg = global_index.mods.get(key) if global_index is not None else None
            unlink_package(linked, root, global_pkg)
            index.linked.pop(key)

        pkg = install_archive(archive, root)
        previous = index.mods.get(pkg.key)
        if previous is not None:
            # 覆盖其他版本: 沿用禁用状态，清掉新版本已不包含的子包
            pkg = merge_update(root, previous, pkg)
        pkg.author = item.package.author
        pkg.depends_on = self._dependency_names(item.version.dependencies)
        index.insert(pkg)
        self.cache.clean(pkg.package_name, pkg.version)
        return pkg

    def _dependency_names(self, specifiers: list[str]) -> list[str]:
        names = []
        for spec in specifiers:
            if self.resolver.is_excluded(spec):
                continue
            _, name = split_specifier(spec)
            names.append(canonical_key(name))
        return names


def _link_dependents(index: LocalIndex) -> None:
    """根据 depends_on 回填被依赖包的 needed_by"""
    for pkg in index.mods.values():
        for dep in pkg.depends_on:
            target = index.mods.get(canonical_key(dep))
            if target is not None and pkg.key not in target.needed_by:
                target.needed_by.append(pkg.key)
