"""全局包硬链接共享

全局根目录中的一个物理副本可通过硬链接共享到多个本地 profile 的 mods 目录，
无需重复下载。物理副本上的 linked_by 记录引用它的 profile 集合:
  - link:   为每个子包建立硬链接，profile 加入 linked_by
  - unlink: 删除 profile 中的链接目录，profile 移出 linked_by
  - 全局包仅在 linked_by 为空时才可安全删除
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from modkit.core.models import LocalPackage, SubPackage

logger = logging.getLogger(__name__)


def owner_id(profile_root: str | Path) -> str:
    """profile 在 linked_by 中的标识（绝对路径）"""
    return str(Path(profile_root).resolve())


def link_dir(original: Path, target: Path) -> None:
    """递归地为 original 下的每个文件在 target 下创建硬链接"""
    logger.debug("链接目录 %s -> %s", original, target)
    target.mkdir(parents=True, exist_ok=True)
    for entry in original.iterdir():
        dest = target / entry.name
        if entry.is_dir():
            link_dir(entry, dest)
            continue
        logger.debug("创建硬链接 %s -> %s", entry, dest)
        os.link(entry, dest)


def link_package(
    pkg: LocalPackage,
    global_root: str | Path,
    profile_root: str | Path,
) -> LocalPackage:
    """将全局包的全部子包链接进 profile，返回写入 profile 账本的记录

    子包链接到 profile 中相同的相对路径，全局已禁用的子包落在 profile 的 .disabled/ 下。
    profile 中已存在的同名目录会先被删除。
    """
    global_root = Path(global_root)
    profile_root = Path(profile_root)
    for sub in pkg.subpackages:
        target = profile_root / sub.path
        if target.exists():
            logger.debug("删除旧链接目录 %s", target)
            shutil.rmtree(target)
        link_dir(global_root / sub.path, target)

    owner = owner_id(profile_root)
    if owner not in pkg.linked_by:
        pkg.linked_by.append(owner)
    logger.info("已链接 %s@%s -> %s", pkg.package_name, pkg.version, profile_root)
    return LocalPackage(
        package_name=pkg.package_name,
        version=pkg.version,
        subpackages=[SubPackage(s.name, s.path) for s in pkg.subpackages],
        depends_on=list(pkg.depends_on),
        needed_by=list(pkg.needed_by),
        author=pkg.author,
    )


def unlink_package(
    linked: LocalPackage,
    profile_root: str | Path,
    global_pkg: LocalPackage | None = None,
) -> None:
    """删除 profile 中的链接目录，并从全局副本的 linked_by 中移除该 profile"""
    profile_root = Path(profile_root)
    for sub in linked.subpackages:
        target = profile_root / sub.path
        if target.exists():
            shutil.rmtree(target)
    if global_pkg is not None:
        owner = owner_id(profile_root)
        global_pkg.linked_by = [o for o in global_pkg.linked_by if o != owner]
    logger.info("已取消链接 %s (%s)", linked.package_name, profile_root)
