"""归档获取: 缓存优先 + 远程下载

1. 缓存中已有请求版本 → 直接返回
2. 否则下载到缓存目录并登记
3. 未指定版本且下载失败时，退回使用缓存中版本号最大的归档
"""

from __future__ import annotations

import logging
from pathlib import Path

from modkit.core.exceptions import NetworkError
from modkit.core.models import RemotePackage, RemoteVersion
from modkit.core.pkg.cache import PackageCache
from modkit.services.downloader import Downloader, ProgressCallback

logger = logging.getLogger(__name__)


class ArchiveFetcher:
    """归档获取器"""

    def __init__(
        self,
        cache: PackageCache,
        downloader: Downloader,
        use_cache: bool = True,
    ) -> None:
        self.cache = cache
        self.downloader = downloader
        self.use_cache = use_cache

    def fetch(
        self,
        pkg: RemotePackage,
        version: RemoteVersion,
        *,
        pinned: bool = True,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """返回 pkg@version 的本地归档路径

        Raises:
            NetworkError: 下载失败且没有可用的缓存归档
        """
        if self.use_cache:
            hit = self.cache.get(pkg.name, version.version)
            if hit is not None:
                logger.info("缓存命中: %s@%s -> %s", pkg.name, version.version, hit)
                return hit

        dest = self.cache.path_for(pkg.name, version.version)
        logger.info("下载 %s@%s (%s)", pkg.name, version.version, version.file_size_string())
        try:
            path = self.downloader.download(version.url, dest, progress=progress)
        except NetworkError:
            fallback = self.cache.get_any(pkg.name) if self.use_cache and not pinned else None
            if fallback is None:
                raise
            logger.warning("下载 %s 失败，使用缓存中的旧归档 %s", pkg.name, fallback.name)
            return fallback
        self.cache.add(pkg.name, version.version, path)
        return path
