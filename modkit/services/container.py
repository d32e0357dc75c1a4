"""服务容器: 统一依赖注入

所有服务和核心组件通过容器获取，同一容器内的实例共享状态（缓存表等）。
不提供全局单例: CLI 每次调用构造一个 Config 和一个容器，显式向下传递。

依赖关系图（→ 表示依赖）:
  fetcher  → cache, downloader
  installs → registry, fetcher, resolver, cache
  updates  → fetcher, cache
  packages → cache, resolver

用法:
    cfg = Config.from_file("modkit.yml")
    container = ServiceContainer(cfg)
    report = container.installs.install(["author.name"], yes=True)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modkit.core.config import Config
    from modkit.core.pkg.cache import PackageCache
    from modkit.core.pkg.resolver import DependencyResolver
    from modkit.services.downloader import Downloader
    from modkit.services.fetcher import ArchiveFetcher
    from modkit.services.install_service import InstallService
    from modkit.services.package_service import PackageService
    from modkit.services.registry_client import RegistryClient
    from modkit.services.update_service import UpdateService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config) -> None:
        self._instances: dict[str, object] = {}
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    # ---- 核心组件 ----

    @property
    def cache(self) -> PackageCache:
        if "cache" not in self._instances:
            from modkit.core.pkg.cache import PackageCache
            cache_dir = Path(self._config.cache_dir)
            cache_dir.mkdir(parents=True, exist_ok=True)
            self._instances["cache"] = PackageCache.build(cache_dir)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def resolver(self) -> DependencyResolver:
        if "resolver" not in self._instances:
            from modkit.core.pkg.resolver import DependencyResolver
            self._instances["resolver"] = DependencyResolver(
                exclude_namespaces=self._config.excluded_dependencies,
            )
        return self._instances["resolver"]  # type: ignore[return-value]

    # ---- 外部协作者 ----

    @property
    def registry(self) -> RegistryClient:
        if "registry" not in self._instances:
            from modkit.services.registry_client import RegistryClient
            self._instances["registry"] = RegistryClient(
                url=self._config.registry_url,
                timeout=self._config.download_timeout,
            )
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def downloader(self) -> Downloader:
        if "downloader" not in self._instances:
            from modkit.services.downloader import Downloader
            self._instances["downloader"] = Downloader(
                timeout=self._config.download_timeout,
            )
        return self._instances["downloader"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> ArchiveFetcher:
        if "fetcher" not in self._instances:
            from modkit.services.fetcher import ArchiveFetcher
            self._instances["fetcher"] = ArchiveFetcher(
                cache=self.cache,
                downloader=self.downloader,
                use_cache=self._config.use_cache,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def installs(self) -> InstallService:
        if "installs" not in self._instances:
            from modkit.services.install_service import InstallService
            self._instances["installs"] = InstallService(
                registry=self.registry,
                fetcher=self.fetcher,
                resolver=self.resolver,
                cache=self.cache,
                local_root=self._config.mods_dir,
                global_root=self._config.global_dir,
                index_file=self._config.index_file,
                lock_timeout=self._config.lock_timeout,
            )
        return self._instances["installs"]  # type: ignore[return-value]

    @property
    def updates(self) -> UpdateService:
        if "updates" not in self._instances:
            from modkit.services.update_service import UpdateService
            self._instances["updates"] = UpdateService(
                fetcher=self.fetcher,
                cache=self.cache,
            )
        return self._instances["updates"]  # type: ignore[return-value]

    @property
    def packages(self) -> PackageService:
        if "packages" not in self._instances:
            from modkit.services.package_service import PackageService
            self._instances["packages"] = PackageService(
                local_root=self._config.mods_dir,
                global_root=self._config.global_dir,
                cache=self.cache,
                resolver=self.resolver,
                index_file=self._config.index_file,
                lock_timeout=self._config.lock_timeout,
            )
        return self._instances["packages"]  # type: ignore[return-value]
