"""更新服务测试"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from modkit.core.exceptions import NetworkError
from modkit.core.models import LocalPackage, RemotePackage, RemoteVersion
from modkit.core.pkg.cache import PackageCache
from modkit.core.pkg.index import LocalIndex
from modkit.core.pkg.installer import install_archive
from modkit.core.pkg.linker import link_package, owner_id
from modkit.core.pkg.toggler import disable
from modkit.services.report import FAILED, LINKED, UPDATED
from modkit.services.update_service import UpdateService, find_outdated, merge_update


def _remote(name: str, latest: str) -> RemotePackage:
    return RemotePackage(
        name=name, author="dev",
        versions={latest: RemoteVersion(latest, f"https://x/{name}/{latest}")},
        latest=latest,
    )


def _local(name: str, version: str) -> LocalPackage:
    return LocalPackage(package_name=name, version=version)


def _snapshot(*roots: Path) -> dict[str, tuple[int, int]]:
    """目录树中每个路径的 (inode, mtime)"""
    result = {}
    for root in roots:
        for dirpath, dirnames, filenames in os.walk(root):
            for n in dirnames + filenames:
                p = os.path.join(dirpath, n)
                st = os.stat(p)
                result[p] = (st.st_ino, st.st_mtime_ns)
    return result


@pytest.fixture
def cache(tmp_path: Path) -> PackageCache:
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    return PackageCache.build(cache_dir)


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "mods"
    r.mkdir()
    return r


def _fetcher_for(archives: dict[str, Path]) -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch.side_effect = lambda pkg, version, **kw: archives[pkg.name]
    return fetcher


class TestFindOutdated:
    def test_compares_with_latest(self, root: Path) -> None:
        index = LocalIndex(root / ".modkit.yml")
        index.insert(_local("Bar", "1.0.0"))
        index.insert(_local("Same", "2.0.0"))
        index.insert(_local("LocalOnly", "0.1"))
        remote = [_remote("bar", "1.1.0"), _remote("Same", "2.0.0")]
        outdated = find_outdated(index, remote)
        assert [(o.local.package_name, o.latest.version) for o in outdated] == [("Bar", "1.1.0")]


class TestUpdateService:
    def test_disabled_subpackage_stays_disabled(
        self, tmp_path: Path, root: Path, cache: PackageCache, make_archive,
    ) -> None:
        old = install_archive(
            make_archive("Bar", "1.0.0", {"mods/ModA/old.txt": "v1"}), root,
        )
        disable(root, old.subpackages[0])
        index = LocalIndex(root / ".modkit.yml")
        index.insert(old)

        new_archive = make_archive("Bar", "2.0.0", {"mods/ModA/new.txt": "v2"})
        svc = UpdateService(_fetcher_for({"Bar": new_archive}), cache)
        report = svc.update(index, None, [_remote("Bar", "2.0.0")], yes=True)

        assert [(r.name, r.status) for r in report.results] == [("Bar", UPDATED)]
        assert (root / ".disabled" / "ModA" / "new.txt").read_text() == "v2"
        assert not (root / ".disabled" / "ModA" / "old.txt").exists()
        assert not (root / "ModA").exists()
        entry = index.mods["bar"]
        assert entry.version == "2.0.0"
        assert entry.subpackages[0].path == Path(".disabled/ModA")
        assert entry.subpackages[0].disabled

    def test_enabled_subpackage_replaced(
        self, root: Path, cache: PackageCache, make_archive,
    ) -> None:
        old = install_archive(make_archive("Bar", "1.0.0", {"mods/ModA/old.txt": "v1"}), root)
        old.depends_on = ["lib"]
        index = LocalIndex(root / ".modkit.yml")
        index.insert(old)
        new_archive = make_archive("Bar", "2.0.0", {"mods/ModA/new.txt": "v2"})

        UpdateService(_fetcher_for({"Bar": new_archive}), cache).update(
            index, None, [_remote("Bar", "2.0.0")], yes=True,
        )

        assert (root / "ModA" / "new.txt").exists()
        assert not (root / "ModA" / "old.txt").exists()
        assert index.mods["bar"].depends_on == ["lib"]

    def test_nothing_outdated_is_noop(
        self, tmp_path: Path, root: Path, cache: PackageCache, make_archive,
    ) -> None:
        pkg = install_archive(make_archive("Bar", "1.0.0", {"mods/ModA/f": "x"}), root)
        index = LocalIndex(root / ".modkit.yml")
        index.insert(pkg)
        index.save()
        before = _snapshot(root, cache.cache_dir)

        fetcher = MagicMock()
        confirm = MagicMock()
        report = UpdateService(fetcher, cache).update(
            index, None, [_remote("Bar", "1.0.0")], confirm=confirm,
        )

        assert report.results == [] and not report.aborted
        fetcher.fetch.assert_not_called()
        confirm.assert_not_called()
        assert not index.dirty
        assert _snapshot(root, cache.cache_dir) == before

    def test_confirm_declined(self, root: Path, cache: PackageCache) -> None:
        index = LocalIndex(root / ".modkit.yml")
        index.insert(_local("Bar", "1.0.0"))
        fetcher = MagicMock()
        report = UpdateService(fetcher, cache).update(
            index, None, [_remote("Bar", "2.0.0")], confirm=lambda plan: False,
        )
        assert report.aborted
        fetcher.fetch.assert_not_called()
        assert index.mods["bar"].version == "1.0.0"

    @pytest.mark.parametrize("force, expect_second", [(False, False), (True, True)])
    def test_failure_stops_unless_force(
        self, root: Path, cache: PackageCache, make_archive,
        force: bool, expect_second: bool,
    ) -> None:
        index = LocalIndex(root / ".modkit.yml")
        index.insert(_local("Aaa", "1.0"))
        index.insert(_local("Zzz", "1.0"))
        good = make_archive("Zzz", "2.0", {"mods/ZMod/f": "x"})

        def fetch(pkg, version, **kw):
            if pkg.name == "Aaa":
                raise NetworkError("offline")
            return good

        fetcher = MagicMock()
        fetcher.fetch.side_effect = fetch
        report = UpdateService(fetcher, cache).update(
            index, None, [_remote("Aaa", "2.0"), _remote("Zzz", "2.0")],
            yes=True, force=force,
        )

        assert report.failures[0].name == "Aaa"
        assert index.mods["aaa"].version == "1.0"
        assert (index.mods["zzz"].version == "2.0") is expect_second

    def test_cache_cleaned_after_update(
        self, root: Path, cache: PackageCache, make_archive,
    ) -> None:
        stale = cache.cache_dir / "Bar_1.0.0.zip"
        stale.write_bytes(b"old")
        cache.add("Bar", "1.0.0", stale)
        index = LocalIndex(root / ".modkit.yml")
        index.insert(_local("Bar", "1.0.0"))
        new_archive = make_archive("Bar", "2.0.0", {"mods/ModA/f": "x"})

        UpdateService(_fetcher_for({"Bar": new_archive}), cache).update(
            index, None, [_remote("Bar", "2.0.0")], yes=True,
        )
        assert not stale.exists()

    def test_linked_profiles_relinked(
        self, tmp_path: Path, cache: PackageCache, make_archive,
    ) -> None:
        global_root = tmp_path / "global"
        local_root = tmp_path / "profile"
        global_root.mkdir()
        local_root.mkdir()
        gpkg = install_archive(make_archive("Shared", "1.0.0", {"mods/SharedMod/v1.txt": "1"}), global_root)
        global_index = LocalIndex(global_root / ".modkit.yml")
        global_index.insert(gpkg)
        local_index = LocalIndex(local_root / ".modkit.yml")
        local_index.insert(link_package(gpkg, global_root, local_root), linked=True)

        new_archive = make_archive("Shared", "2.0.0", {"mods/SharedMod/v2.txt": "2"})
        report = UpdateService(_fetcher_for({"Shared": new_archive}), cache).update(
            local_index, global_index, [_remote("Shared", "2.0.0")], yes=True,
        )

        assert [r.status for r in report.results] == [UPDATED, LINKED]
        assert not (local_root / "SharedMod" / "v1.txt").exists()
        linked_file = local_root / "SharedMod" / "v2.txt"
        assert os.stat(linked_file).st_ino == os.stat(global_root / "SharedMod" / "v2.txt").st_ino
        assert local_index.linked["shared"].version == "2.0.0"
        assert global_index.mods["shared"].linked_by == [owner_id(local_root)]
        assert FAILED not in [r.status for r in report.results]

    def test_relink_keeps_global_disabled_state(
        self, tmp_path: Path, cache: PackageCache, make_archive,
    ) -> None:
        global_root = tmp_path / "global"
        local_root = tmp_path / "profile"
        global_root.mkdir()
        local_root.mkdir()
        gpkg = install_archive(make_archive("Shared", "1.0.0", {"mods/SharedMod/v1.txt": "1"}), global_root)
        disable(global_root, gpkg.subpackages[0])
        global_index = LocalIndex(global_root / ".modkit.yml")
        global_index.insert(gpkg)
        local_index = LocalIndex(local_root / ".modkit.yml")
        local_index.insert(link_package(gpkg, global_root, local_root), linked=True)

        new_archive = make_archive("Shared", "2.0.0", {"mods/SharedMod/v2.txt": "2"})
        UpdateService(_fetcher_for({"Shared": new_archive}), cache).update(
            local_index, global_index, [_remote("Shared", "2.0.0")], yes=True,
        )

        assert (local_root / ".disabled" / "SharedMod" / "v2.txt").exists()
        assert not (local_root / "SharedMod").exists()
        assert local_index.linked["shared"].subpackages[0].disabled


class TestMergeUpdate:
    def test_removes_dropped_subpackages(self, root: Path, make_archive) -> None:
        old = install_archive(
            make_archive("Bar", "1.0.0", {"mods/ModA/f": "x", "mods/ModZ/f": "x"}), root,
        )
        new = install_archive(make_archive("Bar", "2.0.0", {"mods/ModA/f": "y"}), root)
        merged = merge_update(root, old, new)
        assert [s.name for s in merged.subpackages] == ["ModA"]
        assert not (root / "ModZ").exists()

    def test_pairs_by_name_when_sets_differ(self, root: Path, make_archive) -> None:
        old = install_archive(
            make_archive("Bar", "1.0.0", {"mods/ModA/f": "a1", "mods/ModB/f": "b1"}), root,
        )
        disable(root, old.subpackages[0])
        new = install_archive(
            make_archive("Bar", "2.0.0", {"mods/ModB/f": "b2", "mods/ModC/f": "c2"}), root,
        )

        merged = merge_update(root, old, new)

        assert [(s.name, s.path.as_posix()) for s in merged.subpackages] == [
            ("ModB", "ModB"), ("ModC", "ModC"),
        ]
        assert (root / "ModB" / "f").read_text() == "b2"
        assert not (root / ".disabled" / "ModA").exists()

    def test_disabled_keeps_own_path_among_others(self, root: Path, make_archive) -> None:
        old = install_archive(
            make_archive("Bar", "1.0.0", {"mods/ModA/f": "a1", "mods/ModB/f": "b1"}), root,
        )
        disable(root, old.subpackages[1])
        new = install_archive(
            make_archive("Bar", "2.0.0", {"mods/ModB/f": "b2", "mods/ModC/f": "c2"}), root,
        )

        merged = merge_update(root, old, new)

        assert [(s.name, s.path.as_posix()) for s in merged.subpackages] == [
            ("ModB", ".disabled/ModB"), ("ModC", "ModC"),
        ]
        assert (root / ".disabled" / "ModB" / "f").read_text() == "b2"
        assert not (root / "ModB").exists()
        assert not (root / "ModA").exists()
