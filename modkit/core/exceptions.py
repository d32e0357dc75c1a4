"""统一异常体系

所有业务异常继承 ModkitError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出友好提示（包名 + 原因）。

文件系统错误（创建 / 重命名 / 删除失败）不在此包装，
直接以内置 OSError 族向上传播。
"""

from __future__ import annotations


class ModkitError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ModkitError):
    """配置文件或索引文件内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(ModkitError, ValueError):
    """输入数据校验失败（包名格式、URL 协议等）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFoundError(ModkitError):
    """索引文件、归档、包或子包不存在"""

    code = "NOT_FOUND"


class InstallError(ModkitError):
    """单个包安装失败"""

    code = "INSTALL_ERROR"


class MissingManifestError(InstallError):
    """归档内缺少 manifest.json"""

    code = "MISSING_MANIFEST"


class ArchiveParseError(InstallError):
    """归档或清单无法解析"""

    code = "ARCHIVE_PARSE_ERROR"


class NoInstallableContentError(InstallError):
    """归档内找不到可安装的目录"""

    code = "NO_INSTALLABLE_CONTENT"


class DependencyError(ModkitError):
    """依赖说明符无法在远端索引中解析"""

    code = "DEPENDENCY_ERROR"

    def __init__(self, specifier: str) -> None:
        super().__init__(f"无法解析依赖: {specifier}")
        self.specifier = specifier


class NetworkError(ModkitError):
    """远端索引获取或下载失败"""

    code = "NETWORK_ERROR"


class IndexLockedError(ModkitError):
    """索引文件被其他进程锁定"""

    code = "INDEX_LOCKED"
