"""远端注册表客户端

拉取包索引（JSON 数组）并映射为 RemotePackage / RemoteVersion。
每个包的 versions 列表第一项为最新版本。
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from modkit.core.exceptions import NetworkError
from modkit.core.models import PackageName, RemotePackage, RemoteVersion, canonical_key
from modkit.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)


def parse_index(data: Any) -> list[RemotePackage]:
    """注册表 JSON → RemotePackage 列表，结构不完整的条目跳过"""
    if not isinstance(data, list):
        raise NetworkError("注册表返回的索引不是数组")

    packages: list[RemotePackage] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("name"):
            logger.debug("跳过无效索引条目: %r", item)
            continue
        versions: dict[str, RemoteVersion] = {}
        latest = ""
        for v in item.get("versions") or []:
            number = str(v.get("version_number", "")).strip()
            if not number:
                continue
            versions[number] = RemoteVersion(
                version=number,
                url=v.get("download_url", ""),
                file_size=int(v.get("file_size") or 0),
                description=v.get("description", ""),
                dependencies=list(v.get("dependencies") or []),
            )
            if not latest:
                latest = number
        packages.append(RemotePackage(
            name=item["name"],
            author=item.get("owner", ""),
            versions=versions,
            latest=latest,
        ))
    logger.debug("注册表索引解析完成: %d 个包", len(packages))
    return packages


def find_package(
    remote_index: list[RemotePackage], name: PackageName,
) -> RemotePackage | None:
    """按 author + name 不区分大小写查找"""
    for p in remote_index:
        if p.key == name.name and canonical_key(p.author) == name.author:
            return p
    return None


class RegistryClient:
    """注册表 HTTP 客户端"""

    def __init__(self, url: str, timeout: int = 60) -> None:
        self.url = url
        self.timeout = timeout

    def fetch_index(self) -> list[RemotePackage]:
        """拉取完整包索引

        Raises:
            ValidationError: URL 协议不是 http/https
            NetworkError: 请求失败或响应不是合法 JSON
        """
        validate_url_scheme(self.url, context="registry")
        logger.info("拉取注册表索引: %s", self.url)
        req = urllib.request.Request(self.url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                raw = resp.read()
        except (urllib.error.URLError, OSError) as e:
            raise NetworkError(f"无法获取注册表索引 {self.url}: {e}") from e
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise NetworkError(f"注册表索引不是合法 JSON: {e}") from e
        return parse_index(data)
