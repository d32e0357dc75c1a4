"""包状态引擎

- cache.py: 下载归档缓存
- index.py: 本地索引账本 + 加锁提交
- installer.py: 解压 / 发现子包 / rename 替换
- resolver.py: 依赖传递闭包
- toggler.py: 子包启用 / 禁用
- linker.py: 全局包硬链接共享
"""

from modkit.core.pkg.cache import PackageCache
from modkit.core.pkg.index import LocalIndex, open_index
from modkit.core.pkg.installer import install_archive, uninstall
from modkit.core.pkg.resolver import DependencyResolver

__all__ = [
    "PackageCache",
    "LocalIndex",
    "open_index",
    "install_archive",
    "uninstall",
    "DependencyResolver",
]
