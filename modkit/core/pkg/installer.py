"""归档安装器

安装流程:
  1. 规范化目标根目录
  2. 读取并解析归档内 manifest.json
  3. 解压到根目录内以时间戳命名的临时目录
     - 跳过隐藏（. 开头）条目
     - 目标位置已存在的 .cfg 文件保留旧内容，不被覆盖
  4. 发现子包: 存在 mods/ 时其每个子目录为一个子包，否则每个顶层目录为一个子包
  5. 每个子包: 删除最终位置的旧目录，rename（非复制）到位
  6. 删除临时目录
  7. 返回 LocalPackage

rename 只保证单个子包的替换近似瞬时，同一包的多个子包之间不是原子的。
步骤 3-6 出现 OSError 时整个包安装中止，临时目录可能残留，需要手动清理。
调用方在安装成功后才写入索引，并负责调用 PackageCache.clean。
"""

from __future__ import annotations

import logging
import shutil
import time
import zipfile
from pathlib import Path, PurePosixPath

from modkit.core.exceptions import (
    ArchiveParseError,
    InstallError,
    MissingManifestError,
    NoInstallableContentError,
)
from modkit.core.models import DISABLED_DIR, LocalPackage, Manifest, SubPackage

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
MODS_DIR = "mods"
TEMP_PREFIX = ".modkit-tmp-"
PRESERVED_SUFFIXES = frozenset((".cfg",))


def read_manifest(archive: zipfile.ZipFile) -> Manifest:
    """读取归档内 manifest.json"""
    try:
        raw = archive.read(MANIFEST_NAME)
    except KeyError as e:
        raise MissingManifestError(f"归档缺少 {MANIFEST_NAME}") from e
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ArchiveParseError(f"{MANIFEST_NAME} 不是 UTF-8 文本") from e
    return Manifest.from_json(text)


def install_archive(archive_file: str | Path, target_root: str | Path) -> LocalPackage:
    """将归档安装到 target_root，返回新的 LocalPackage 记录"""
    root = Path(target_root).resolve(strict=True)
    archive_file = Path(archive_file)
    logger.debug("开始安装 %s -> %s", archive_file.name, root)

    try:
        zf = zipfile.ZipFile(archive_file)
    except zipfile.BadZipFile as e:
        raise ArchiveParseError(f"无法解析归档 {archive_file.name}: {e}") from e

    with zf:
        manifest = read_manifest(zf)
        temp_dir = root / f"{TEMP_PREFIX}{time.time_ns()}"
        temp_dir.mkdir(parents=True)
        try:
            _extract(zf, temp_dir, root)
            subpackages = _discover(temp_dir)
            if not subpackages:
                raise NoInstallableContentError(
                    f"{manifest.name} 的归档中找不到可安装的目录"
                )
            for temp_path, sub in subpackages:
                _swap_in(temp_path, root / sub.path)
        except InstallError:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        except OSError:
            logger.error("安装 %s 失败，临时目录可能残留: %s", manifest.name, temp_dir)
            raise
        shutil.rmtree(temp_dir)

    logger.info(
        "已安装 %s@%s (%d 个子包)",
        manifest.name, manifest.version_number, len(subpackages),
    )
    return LocalPackage(
        package_name=manifest.name,
        version=manifest.version_number,
        subpackages=[sub for _, sub in subpackages],
        depends_on=[],
        needed_by=[],
    )


def _entry_parts(name: str) -> tuple[str, ...]:
    """校验归档条目路径，拒绝绝对路径与 .. 穿越"""
    p = PurePosixPath(name.replace("\\", "/"))
    if p.is_absolute() or ".." in p.parts:
        raise ArchiveParseError(f"归档条目路径非法: {name}")
    return tuple(part for part in p.parts if part not in ("", "."))


def _final_relative(parts: tuple[str, ...]) -> tuple[str, ...]:
    """临时目录内相对路径 → 管理根目录内相对路径（去掉 mods/ 前缀）"""
    if len(parts) > 1 and parts[0] == MODS_DIR:
        return parts[1:]
    return parts


def _existing_config(root: Path, rel: tuple[str, ...]) -> Path | None:
    """查找最终位置（含 .disabled 镜像位置）已存在的配置文件"""
    for candidate in (root.joinpath(*rel), root.joinpath(DISABLED_DIR, *rel)):
        if candidate.is_file():
            return candidate
    return None


def _extract(zf: zipfile.ZipFile, temp_dir: Path, root: Path) -> None:
    for info in zf.infolist():
        parts = _entry_parts(info.filename)
        if not parts:
            continue
        out = temp_dir.joinpath(*parts)

        if any(part.startswith(".") for part in parts):
            logger.debug("跳过隐藏文件 %s", info.filename)
            continue

        if info.is_dir():
            out.mkdir(parents=True, exist_ok=True)
            continue

        out.parent.mkdir(parents=True, exist_ok=True)
        if out.suffix in PRESERVED_SUFFIXES:
            existing = _existing_config(root, _final_relative(parts))
            if existing is not None:
                logger.debug("保留已有配置文件 %s", existing)
                shutil.copy2(existing, out)
                continue

        logger.debug("解压 %s", info.filename)
        with zf.open(info) as src, open(out, "wb") as dst:
            shutil.copyfileobj(src, dst)


def _discover(temp_dir: Path) -> list[tuple[Path, SubPackage]]:
    """返回 [(临时路径, 子包)]，子包 path 为相对根目录的最终路径"""
    mods_dir = temp_dir / MODS_DIR
    found: list[tuple[Path, SubPackage]] = []
    if mods_dir.is_dir():
        for child in sorted(mods_dir.iterdir()):
            if not child.is_dir():
                logger.debug("mods/ 下非目录条目被忽略: %s", child.name)
                continue
            logger.debug("发现子包 %s", child.name)
            found.append((child, SubPackage(child.name, Path(child.name))))
        return found

    for child in sorted(temp_dir.iterdir()):
        if child.is_dir():
            logger.debug("发现子包 %s", child.name)
            found.append((child, SubPackage(child.name, Path(child.name))))
    return found


def _swap_in(temp_path: Path, final_path: Path) -> None:
    """删除最终位置的旧内容后把临时子树 rename 到位"""
    if final_path.is_dir() and not final_path.is_symlink():
        shutil.rmtree(final_path)
    elif final_path.exists() or final_path.is_symlink():
        final_path.unlink()
    logger.debug("移动 %s -> %s", temp_path, final_path)
    temp_path.rename(final_path)


def uninstall(paths: list[Path]) -> None:
    """删除每个子包目录；删除目录失败时尝试按文件删除，仍失败则抛出"""
    for p in paths:
        try:
            shutil.rmtree(p)
        except OSError:
            logger.debug("删除目录失败，尝试按文件删除: %s", p)
            Path(p).unlink()
        logger.debug("已删除 %s", p)
