"""更新服务

对比本地账本与远端索引，把过期的包更新到最新版本:
  1. 找出 mods 中版本与远端最新版本不一致的包（本地与全局账本各自计算），
     linked 包通过全局账本更新
  2. 没有过期包时直接返回，不触碰文件系统、缓存与网络
  3. 确认后逐包: 获取归档 → 安装到同一根目录 → 合并到原记录
  4. 引用了已更新全局包的 profile 重新建立硬链接
  5. 每个更新成功的包清理旧缓存

合并规则: 新旧子包按小写名称配对；新版本不再包含的旧子包被删除，新增子包保持启用；
旧子包处于禁用状态时，删除 .disabled 下的旧版本目录，
再把新安装的目录移动到该禁用位置，新版本仍保持禁用。
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from modkit.core.exceptions import ModkitError
from modkit.core.models import LocalPackage, RemotePackage, RemoteVersion, canonical_key
from modkit.core.pkg.cache import PackageCache
from modkit.core.pkg.index import LocalIndex
from modkit.core.pkg.installer import install_archive, uninstall
from modkit.core.pkg.linker import link_package, unlink_package
from modkit.services.fetcher import ArchiveFetcher
from modkit.services.report import FAILED, LINKED, UPDATED, BatchReport

logger = logging.getLogger(__name__)


@dataclass
class OutdatedPackage:
    index: LocalIndex
    local: LocalPackage
    remote: RemotePackage
    latest: RemoteVersion

    @property
    def label(self) -> str:
        return f"{self.local.package_name} {self.local.version} -> {self.latest.version}"


ConfirmCallback = Callable[[list[OutdatedPackage]], bool]


def find_outdated(
    index: LocalIndex, remote_index: list[RemotePackage],
) -> list[OutdatedPackage]:
    """账本 mods 中远端最新版本与本地版本不一致的包"""
    by_name = {p.key: p for p in remote_index}
    outdated = []
    for pkg in index.mods.values():
        remote = by_name.get(pkg.key)
        if remote is None:
            logger.debug("远端不存在 %s，跳过", pkg.package_name)
            continue
        latest = remote.get_latest()
        if latest is None or latest.version == pkg.version:
            continue
        logger.debug("过期: %s %s -> %s", pkg.package_name, pkg.version, latest.version)
        outdated.append(OutdatedPackage(index, pkg, remote, latest))
    return outdated


def merge_update(root: Path, old: LocalPackage, new: LocalPackage) -> LocalPackage:
    """把新安装的 LocalPackage 合并到旧记录上，沿用旧子包的禁用状态"""
    old_subs = sorted(old.subpackages, key=lambda s: canonical_key(s.name))
    new_subs = sorted(new.subpackages, key=lambda s: canonical_key(s.name))
    new_by_key = {canonical_key(s.name): s for s in new_subs}

    for old_sub in old_subs:
        new_sub = new_by_key.get(canonical_key(old_sub.name))
        if new_sub is None or not old_sub.disabled:
            continue
        stale = root / old_sub.path
        fresh = root / new_sub.path
        if stale.exists():
            logger.debug("删除旧版本禁用目录 %s", stale)
            shutil.rmtree(stale)
        stale.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("移动 %s -> %s", fresh, stale)
        fresh.rename(stale)
        new_sub.path = old_sub.path

    # 新版本中已不存在的旧子包目录
    claimed = {s.path for s in new_subs}
    leftovers = [root / s.path for s in old_subs if s.path not in claimed and (root / s.path).exists()]
    if leftovers:
        logger.info("删除新版本已移除的子包: %s", ", ".join(str(p) for p in leftovers))
        uninstall(leftovers)

    return LocalPackage(
        package_name=new.package_name,
        version=new.version,
        subpackages=new_subs,
        depends_on=list(old.depends_on),
        needed_by=list(old.needed_by),
        linked_by=list(old.linked_by),
        author=old.author or new.author,
    )


class UpdateService:
    """过期包检测与更新"""

    def __init__(self, fetcher: ArchiveFetcher, cache: PackageCache) -> None:
        self.fetcher = fetcher
        self.cache = cache

    def update(
        self,
        local_index: LocalIndex,
        global_index: LocalIndex | None,
        remote_index: list[RemotePackage],
        *,
        yes: bool = False,
        force: bool = False,
        confirm: ConfirmCallback | None = None,
        profiles: Iterable[LocalIndex] = (),
    ) -> BatchReport:
        """更新所有过期包，账本由调用方负责提交

        profiles: 除 local_index 外其他需要重新链接的 profile 账本
        """
        plan = find_outdated(local_index, remote_index)
        if global_index is not None:
            plan += find_outdated(global_index, remote_index)

        report = BatchReport()
        if not plan:
            logger.info("所有包均为最新")
            return report
        if not yes and confirm is not None and not confirm(plan):
            logger.info("用户取消更新")
            report.aborted = True
            return report

        updated_global: dict[str, LocalPackage] = {}
        for item in plan:
            try:
                merged = self._update_one(item)
            except (ModkitError, OSError) as e:
                logger.exception("更新失败: %s", item.label)
                report.add(item.local.package_name, FAILED, item.latest.version, str(e))
                if not force:
                    break
                continue
            if item.index is global_index:
                updated_global[merged.key] = merged
            report.add(merged.package_name, UPDATED, merged.version)

        if updated_global and global_index is not None:
            self._relink(updated_global, global_index, [local_index, *profiles], report, force)
        return report

    def _update_one(self, item: OutdatedPackage) -> LocalPackage:
        root = item.index.root
        archive = self.fetcher.fetch(item.remote, item.latest, pinned=False)
        new = install_archive(archive, root)
        merged = merge_update(root, item.local, new)
        item.index.insert(merged)
        logger.info("已更新 %s", item.label)
        self.cache.clean(merged.package_name, merged.version)
        return merged

    def _relink(
        self,
        updated: dict[str, LocalPackage],
        global_index: LocalIndex,
        profiles: list[LocalIndex],
        report: BatchReport,
        force: bool,
    ) -> None:
        seen: set[Path] = set()
        for profile in profiles:
            root = profile.root.resolve()
            if root in seen:
                continue
            seen.add(root)
            for key, linked in list(profile.linked.items()):
                pkg = updated.get(key)
                if pkg is None:
                    continue
                try:
                    unlink_package(linked, profile.root)
                    entry = link_package(pkg, global_index.root, profile.root)
                except OSError as e:
                    logger.exception("重新链接失败: %s -> %s", pkg.package_name, profile.root)
                    report.add(pkg.package_name, FAILED, pkg.version, f"重新链接失败: {e}")
                    if not force:
                        return
                    continue
                profile.insert(entry, linked=True)
                report.add(pkg.package_name, LINKED, pkg.version, str(profile.root))
