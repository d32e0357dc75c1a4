"""批量操作的逐包结果

批量操作不是事务性的：前面成功的包保留并已记录，
失败的包在报告中单独列出，而不是汇总为一个整体失败。
"""

from __future__ import annotations

from dataclasses import dataclass, field

INSTALLED = "installed"
UPDATED = "updated"
REMOVED = "removed"
ENABLED = "enabled"
DISABLED = "disabled"
LINKED = "linked"
UNLINKED = "unlinked"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class PackageResult:
    name: str
    status: str
    version: str = ""
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    def __str__(self) -> str:
        label = f"{self.name}@{self.version}" if self.version else self.name
        tail = f": {self.message}" if self.message else ""
        return f"[{self.status}] {label}{tail}"


@dataclass
class BatchReport:
    """一次命令的逐包结果；aborted 表示用户拒绝确认，未做任何修改"""

    results: list[PackageResult] = field(default_factory=list)
    aborted: bool = False

    def add(self, name: str, status: str, version: str = "", message: str = "") -> PackageResult:
        result = PackageResult(name=name, status=status, version=version, message=message)
        self.results.append(result)
        return result

    @property
    def failures(self) -> list[PackageResult]:
        return [r for r in self.results if r.failed]

    @property
    def changed(self) -> list[PackageResult]:
        return [r for r in self.results if r.status not in (SKIPPED, FAILED)]

    @property
    def ok(self) -> bool:
        return not self.failures
