"""测试公共 fixture: 临时构造模组归档"""

from __future__ import annotations

import json
import zipfile
from collections.abc import Callable
from pathlib import Path

import pytest

ArchiveFactory = Callable[..., Path]


def build_archive(
    path: Path,
    name: str,
    version: str,
    files: dict[str, str],
    dependencies: list[str] | None = None,
) -> Path:
    """写出一个包含 manifest.json 与给定文件的 zip 归档"""
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "name": name,
        "version_number": version,
        "dependencies": dependencies or [],
        "description": f"{name} test package",
    }
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("manifest.json", json.dumps(manifest))
        for arcname, content in files.items():
            zf.writestr(arcname, content)
    return path


@pytest.fixture
def make_archive(tmp_path: Path) -> ArchiveFactory:
    """make_archive(name, version, files, dependencies=None) -> 归档路径"""
    out_dir = tmp_path / "archives"

    def _make(
        name: str,
        version: str,
        files: dict[str, str],
        dependencies: list[str] | None = None,
    ) -> Path:
        return build_archive(
            out_dir / f"{name}_{version}.zip", name, version, files, dependencies,
        )

    return _make
