"""核心数据模型

所有核心数据类集中定义，其他模块统一从此处导入:
  - PackageName: 包标识 (author, name, version)
  - RemotePackage / RemoteVersion: 远端注册表中的包
  - Manifest: 归档内 manifest.json
  - LocalPackage / SubPackage: 本地已安装的包及其子包
  - CacheEntry: 缓存目录中的归档

子包是否禁用不作为字段存储，每次读取时由路径推导（is_disabled）。
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any

from modkit.core.exceptions import ArchiveParseError, ValidationError

DISABLED_DIR = ".disabled"

_NAME_RE = re.compile(
    r"^(?P<author>[A-Za-z0-9_]+)[.-](?P<name>[A-Za-z0-9_]+)"
    r"(?:[@-](?P<version>\d+(?:\.\d+)*))?$"
)


def canonical_key(name: str) -> str:
    """包名规范化为小写，作为索引键与比较依据"""
    return name.strip().lower()


def is_disabled(path: str | PurePath) -> bool:
    """路径中任一段为 .disabled 即视为禁用"""
    return DISABLED_DIR in PurePath(path).parts


def parse_version(version: str) -> tuple[int, ...]:
    """将版本号解析为整数元组，非数字段按 -1 处理"""
    parts: list[int] = []
    for seg in version.strip().split("."):
        parts.append(int(seg) if seg.isdigit() else -1)
    return tuple(parts)


def to_file_size_string(size: int) -> str:
    if size // 1_000_000 >= 1:
        return f"{size / 1_048_576:.2f} MB"
    return f"{size / 1024:.2f} KB"


# =========================================================================
# 远端模型
# =========================================================================


@dataclass(frozen=True)
class PackageName:
    """包标识，构造时统一转为小写，此后按结构比较"""

    author: str
    name: str
    version: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "author", canonical_key(self.author))
        object.__setattr__(self, "name", canonical_key(self.name))
        if self.version is not None:
            object.__setattr__(self, "version", self.version.strip() or None)

    @classmethod
    def parse(cls, text: str) -> PackageName:
        """解析 author.name / author.name@1.0.0 / author-name-1.0.0"""
        m = _NAME_RE.match(text.strip())
        if m is None:
            raise ValidationError(
                f"无效的包名: '{text}'，应为 author.name[@version]",
                details=[text],
            )
        return cls(m.group("author"), m.group("name"), m.group("version"))

    def __str__(self) -> str:
        base = f"{self.author}.{self.name}"
        return f"{base}@{self.version}" if self.version else base


@dataclass
class RemoteVersion:
    """远端包的单个版本"""

    version: str
    url: str
    file_size: int = 0
    description: str = ""
    dependencies: list[str] = field(default_factory=list)

    def file_size_string(self) -> str:
        return to_file_size_string(self.file_size)


@dataclass
class RemotePackage:
    """远端注册表中的包"""

    name: str
    author: str
    versions: dict[str, RemoteVersion] = field(default_factory=dict)
    latest: str = ""

    @property
    def key(self) -> str:
        return canonical_key(self.name)

    def get_version(self, version: str) -> RemoteVersion | None:
        return self.versions.get(version.strip())

    def get_latest(self) -> RemoteVersion | None:
        return self.versions.get(self.latest)

    def package_name(self, version: str | None = None) -> PackageName:
        return PackageName(self.author, self.name, version or self.latest)


@dataclass
class Manifest:
    """归档内 manifest.json"""

    name: str
    version_number: str
    dependencies: list[str] = field(default_factory=list)
    description: str = ""
    website_url: str = ""

    @classmethod
    def from_json(cls, raw: str) -> Manifest:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ArchiveParseError(f"manifest.json 解析失败: {e}") from e
        if not isinstance(data, dict):
            raise ArchiveParseError("manifest.json 内容不是对象")
        missing = [k for k in ("name", "version_number") if not data.get(k)]
        if missing:
            raise ArchiveParseError(f"manifest.json 缺少字段: {', '.join(missing)}")
        return cls(
            name=str(data["name"]),
            version_number=str(data["version_number"]),
            dependencies=list(data.get("dependencies") or []),
            description=data.get("description", ""),
            website_url=data.get("website_url", ""),
        )


# =========================================================================
# 本地模型
# =========================================================================


@dataclass
class SubPackage:
    """安装到管理根目录下的单个目录单元，path 相对于根目录"""

    name: str
    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    @property
    def disabled(self) -> bool:
        return is_disabled(self.path)

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "path": self.path.as_posix()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubPackage:
        return cls(name=data["name"], path=Path(data.get("path", data["name"])))


@dataclass
class LocalPackage:
    """本地已安装的包，可能包含多个子包

    linked_by: 以硬链接方式引用此物理副本的 profile 目录集合，
    只有集合为空时才允许删除底层文件。
    """

    package_name: str
    version: str
    subpackages: list[SubPackage] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    needed_by: list[str] = field(default_factory=list)
    linked_by: list[str] = field(default_factory=list)
    author: str = ""

    @property
    def key(self) -> str:
        return canonical_key(self.package_name)

    def flatten_paths(self) -> list[Path]:
        return [s.path for s in self.subpackages]

    def any_disabled(self) -> bool:
        return any(s.disabled for s in self.subpackages)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "package_name": self.package_name,
            "version": self.version,
            "subpackages": [s.to_dict() for s in self.subpackages],
            "depends_on": list(self.depends_on),
            "needed_by": list(self.needed_by),
        }
        if self.author:
            data["author"] = self.author
        if self.linked_by:
            data["linked_by"] = list(self.linked_by)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalPackage:
        return cls(
            package_name=data["package_name"],
            version=str(data["version"]),
            subpackages=[SubPackage.from_dict(s) for s in data.get("subpackages") or []],
            depends_on=list(data.get("depends_on") or []),
            needed_by=list(data.get("needed_by") or []),
            linked_by=list(data.get("linked_by") or []),
            author=data.get("author", ""),
        )


@dataclass
class CacheEntry:
    """缓存目录中的一个归档文件"""

    name: str
    version: str
    path: Path

    @property
    def key(self) -> str:
        return canonical_key(self.name)
