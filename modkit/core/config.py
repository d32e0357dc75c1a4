"""集中配置管理

替代散落的目录常量，提供统一的配置入口。
支持从 YAML 文件加载 + 编程式覆盖。

不设全局单例：CLI 每次调用构造一个 Config，显式传给 ServiceContainer。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from modkit.core.exceptions import ConfigError
from modkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".modkit"
DEFAULT_REGISTRY_URL = "https://northstar.thunderstore.io/c/northstar/api/v1/package/"


@dataclass
class Config:
    """全局配置"""

    # 目录
    mods_dir: str = "mods"
    global_dir: str = str(DEFAULT_HOME / "global")
    cache_dir: str = str(DEFAULT_HOME / "cache")
    index_file: str = ".modkit.yml"

    # 远端
    registry_url: str = DEFAULT_REGISTRY_URL
    download_timeout: int = 60

    # 行为
    use_cache: bool = True
    lock_timeout: float = 10.0
    excluded_dependencies: list[str] = field(default_factory=lambda: ["northstar"])
    profiles: list[str] = field(default_factory=list)

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError, OSError) as e:
            raise ConfigError(f"无法读取配置文件 {path}: {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 内容无效: {e}") from e
        cfg.extra = extra
        logger.info("配置已加载: %s", path)
        return cfg

    def index_path(self, root: str | Path) -> Path:
        """管理根目录下索引账本的路径"""
        return Path(root) / self.index_file

    @property
    def local_index_path(self) -> Path:
        return self.index_path(self.mods_dir)

    @property
    def global_index_path(self) -> Path:
        return self.index_path(self.global_dir)

    def to_dict(self) -> dict:
        return asdict(self)
