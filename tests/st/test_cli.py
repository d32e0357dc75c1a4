"""CLI 端到端测试（注册表与下载器替换为本地归档）"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from modkit import __version__
from modkit.cli import main
from modkit.core.models import RemotePackage, RemoteVersion
from modkit.core.pkg.index import LocalIndex
from modkit.services.downloader import Downloader
from modkit.services.registry_client import RegistryClient
from modkit.utils.logger import reset_logging


class FakeRegistry:
    """url -> 归档路径；packages 为当前远端索引"""

    def __init__(self) -> None:
        self.packages: list[RemotePackage] = []
        self.archives: dict[str, Path] = {}

    def publish(self, archive: Path, name: str, version: str, deps: list[str] | None = None) -> None:
        url = f"https://registry.test/{name}/{version}/"
        self.archives[url] = archive
        pkg = next((p for p in self.packages if p.name == name), None)
        if pkg is None:
            pkg = RemotePackage(name=name, author="dev")
            self.packages.append(pkg)
        pkg.versions = {version: RemoteVersion(version, url, 1024, dependencies=deps or []), **pkg.versions}
        pkg.latest = version


@pytest.fixture(autouse=True)
def _clean_logging():
    # main 每次调用都把 handler 绑到 CliRunner 的临时 stderr
    yield
    reset_logging()


@pytest.fixture
def registry(monkeypatch: pytest.MonkeyPatch) -> FakeRegistry:
    fake = FakeRegistry()

    def download(self, url, dest, progress=None):
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(fake.archives[url], dest)
        return dest

    monkeypatch.setattr(RegistryClient, "fetch_index", lambda self: list(fake.packages))
    monkeypatch.setattr(Downloader, "download", download)
    return fake


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    cfg = tmp_path / "modkit.yml"
    cfg.write_text(yaml.safe_dump({
        "mods_dir": str(tmp_path / "mods"),
        "global_dir": str(tmp_path / "global"),
        "cache_dir": str(tmp_path / "cache"),
    }))
    return tmp_path


def _run(workspace: Path, *args: str):
    runner = CliRunner()
    return runner.invoke(main, ["--config", str(workspace / "modkit.yml"), *args])


class TestCli:
    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert __version__ in result.output

    def test_install_list_toggle_remove(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/f": "x"}), "Bar", "1.0.0")

        result = _run(workspace, "install", "-y", "dev.Bar")
        assert result.exit_code == 0, result.output
        assert "[installed] Bar@1.0.0" in result.output
        assert (workspace / "mods" / "BarMod" / "f").exists()
        assert (workspace / "cache" / "Bar_1.0.0.zip").exists()

        result = _run(workspace, "disable", "BarMod")
        assert result.exit_code == 0, result.output
        assert (workspace / "mods" / ".disabled" / "BarMod").is_dir()

        result = _run(workspace, "list")
        assert "Bar" in result.output and "[x] BarMod" in result.output

        result = _run(workspace, "enable", "bar")
        assert result.exit_code == 0
        assert (workspace / "mods" / "BarMod").is_dir()

        result = _run(workspace, "remove", "Bar")
        assert result.exit_code == 0
        assert not (workspace / "mods" / "BarMod").exists()

    def test_install_unknown_fails(self, workspace: Path, registry: FakeRegistry) -> None:
        result = _run(workspace, "install", "-y", "dev.Nope")
        assert result.exit_code != 0
        assert "NOT_FOUND" in result.output

    def test_install_confirm_declined(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/f": "x"}), "Bar", "1.0.0")
        result = CliRunner().invoke(
            main, ["--config", str(workspace / "modkit.yml"), "install", "dev.Bar"], input="n\n",
        )
        assert result.exit_code == 0
        assert "已取消" in result.output
        assert not (workspace / "mods" / "BarMod").exists()

    def test_update_keeps_disabled(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/old": "1"}), "Bar", "1.0.0")
        assert _run(workspace, "install", "-y", "dev.Bar").exit_code == 0
        assert _run(workspace, "disable", "Bar").exit_code == 0

        registry.publish(make_archive("Bar", "2.0.0", {"mods/BarMod/new": "2"}), "Bar", "2.0.0")
        result = _run(workspace, "update", "-y")
        assert result.exit_code == 0, result.output

        assert (workspace / "mods" / ".disabled" / "BarMod" / "new").exists()
        ledger = LocalIndex.load(workspace / "mods" / ".modkit.yml")
        assert ledger.mods["bar"].version == "2.0.0"
        assert not (workspace / "cache" / "Bar_1.0.0.zip").exists()

        result = _run(workspace, "update", "-y")
        assert "所有包均为最新" in result.output

    def test_update_noop_creates_nothing(self, workspace: Path, registry: FakeRegistry) -> None:
        result = _run(workspace, "update", "-y")
        assert result.exit_code == 0, result.output
        assert "所有包均为最新" in result.output
        assert not (workspace / "mods").exists()
        assert not (workspace / "cache").exists()

    def test_update_noop_leaves_ledger_untouched(
        self, workspace: Path, registry: FakeRegistry, make_archive,
    ) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/f": "x"}), "Bar", "1.0.0")
        assert _run(workspace, "install", "-y", "dev.Bar").exit_code == 0
        ledger = workspace / "mods" / ".modkit.yml"
        (workspace / "mods" / ".modkit.yml.lock").unlink(missing_ok=True)
        before = ledger.stat().st_mtime_ns

        assert _run(workspace, "update", "-y").exit_code == 0
        assert ledger.stat().st_mtime_ns == before
        assert not (workspace / "mods" / ".modkit.yml.lock").exists()

    def test_global_link_unlink(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Shared", "1.0.0", {"mods/SharedMod/f": "x"}), "Shared", "1.0.0")
        assert _run(workspace, "install", "-y", "--global", "dev.Shared").exit_code == 0

        result = _run(workspace, "link", "Shared")
        assert result.exit_code == 0, result.output
        assert (workspace / "mods" / "SharedMod" / "f").exists()

        result = _run(workspace, "remove", "--global", "Shared")
        assert result.exit_code != 0

        result = _run(workspace, "unlink", "Shared")
        assert result.exit_code == 0
        assert not (workspace / "mods" / "SharedMod").exists()
        assert _run(workspace, "remove", "--global", "Shared").exit_code == 0

    def test_export_import(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/f": "x"}), "Bar", "1.0.0")
        assert _run(workspace, "install", "-y", "dev.Bar").exit_code == 0
        out = workspace / "list.yml"
        assert _run(workspace, "export", str(out)).exit_code == 0
        assert yaml.safe_load(out.read_text()) == ["dev.bar@1.0.0"]

        assert _run(workspace, "remove", "Bar").exit_code == 0
        result = _run(workspace, "import", "-y", str(out))
        assert result.exit_code == 0, result.output
        assert (workspace / "mods" / "BarMod" / "f").exists()

    def test_clear_cache(self, workspace: Path, registry: FakeRegistry, make_archive) -> None:
        registry.publish(make_archive("Bar", "1.0.0", {"mods/BarMod/f": "x"}), "Bar", "1.0.0")
        _run(workspace, "install", "-y", "dev.Bar")
        result = _run(workspace, "clear-cache")
        assert "已删除 1 个缓存文件" in result.output
