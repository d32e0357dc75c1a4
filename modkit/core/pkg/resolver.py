"""依赖解析器

依赖说明符格式: namespace-Name-version（如 author-ModA-1.0.0），
取第二段作为包名，在远端索引中按名称（不区分大小写）查找。

解析为完整传递闭包：广度优先展开，去重，容忍循环依赖。
任一说明符无法解析时整体失败，不返回部分结果。
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from modkit.core.exceptions import DependencyError
from modkit.core.models import RemotePackage, canonical_key

logger = logging.getLogger(__name__)


def split_specifier(specifier: str) -> tuple[str, str]:
    """拆分依赖说明符，返回 (namespace, name)"""
    parts = specifier.strip().split("-")
    if len(parts) < 2 or not parts[1]:
        raise DependencyError(specifier)
    return parts[0], parts[1]


class DependencyResolver:
    """依赖说明符 → 远端包列表"""

    def __init__(self, exclude_namespaces: Iterable[str] = ()) -> None:
        self.exclude_namespaces = {canonical_key(n) for n in exclude_namespaces}

    def is_excluded(self, specifier: str) -> bool:
        namespace = specifier.strip().split("-", 1)[0]
        return canonical_key(namespace) in self.exclude_namespaces

    def resolve(
        self,
        dependency_specifiers: list[str],
        remote_index: list[RemotePackage],
    ) -> list[RemotePackage]:
        """展开依赖说明符为远端包列表（完整传递闭包）

        Raises:
            DependencyError: 某个说明符在远端索引中不存在，.specifier 为该说明符
        """
        by_name = {p.key: p for p in remote_index}
        resolved: dict[str, RemotePackage] = {}
        queue: deque[str] = deque(dependency_specifiers)

        while queue:
            spec = queue.popleft()
            if self.is_excluded(spec):
                logger.debug("跳过排除的依赖: %s", spec)
                continue
            _, name = split_specifier(spec)
            key = canonical_key(name)
            if key in resolved:
                continue
            pkg = by_name.get(key)
            if pkg is None:
                logger.error("依赖无法解析: %s", spec)
                raise DependencyError(spec)
            resolved[key] = pkg
            logger.debug("依赖已解析: %s -> %s@%s", spec, pkg.name, pkg.latest)
            latest = pkg.get_latest()
            if latest is not None:
                queue.extend(latest.dependencies)

        return list(resolved.values())
