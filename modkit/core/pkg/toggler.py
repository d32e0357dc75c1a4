"""子包启用 / 禁用

禁用 = 把子包目录移动到根目录下 .disabled/ 的同名相对路径，
启用 = 去掉 .disabled 前缀移回原处。

两者都只是文件系统上的移动，同时改写 SubPackage.path，
不在账本中存任何禁用标记；禁用状态始终由路径推导。
"""

from __future__ import annotations

import logging
from pathlib import Path

from modkit.core.models import DISABLED_DIR, SubPackage

logger = logging.getLogger(__name__)


def disable(root: str | Path, sub: SubPackage) -> bool:
    """禁用子包，已禁用时返回 False 且不做任何修改"""
    if sub.disabled:
        return False

    root = Path(root)
    old_path = root / sub.path
    new_rel = Path(DISABLED_DIR) / sub.path
    new_path = root / new_rel

    new_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("移动子包 %s -> %s", old_path, new_path)
    old_path.rename(new_path)

    sub.path = new_rel
    logger.info("已禁用 %s", sub.name)
    return True


def enable(root: str | Path, sub: SubPackage) -> bool:
    """启用子包，未禁用时返回 False 且不做任何修改

    Raises:
        FileExistsError: 原位置已存在同名目录
    """
    if not sub.disabled:
        return False

    root = Path(root)
    old_path = root / sub.path
    new_rel = Path(*[p for p in sub.path.parts if p != DISABLED_DIR])
    new_path = root / new_rel

    if new_path.exists():
        raise FileExistsError(f"启用失败，目标已存在: {new_path}")
    new_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("移动子包 %s -> %s", old_path, new_path)
    old_path.rename(new_path)

    sub.path = new_rel
    logger.info("已启用 %s", sub.name)
    return True
