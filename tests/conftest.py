# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2025 The GameLog Authors

"""
Shared fixtures for the GameLog tests.
"""

import io
import sys
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest

pytest_plugins = ["pytest_asyncio"]


def make_archive(
    path: Path,
    files: Dict[str, bytes],
    top: Optional[str] = "gamelog-1.4.0",
) -> Path:
    """Write a .tar.gz whose entries live under a single top-level folder."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        if top:
            folder = tarfile.TarInfo(top)
            folder.type = tarfile.DIRTYPE
            folder.mode = 0o755
            tar.addfile(folder)
        for name, data in files.items():
            info = tarfile.TarInfo(f"{top}/{name}" if top else name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return path


RELEASE_FILES = {
    "gamelog/__init__.py": b"__version__ = '1.4.0'\n",
    "gamelog/main.py": b"# new main\n",
    "pyproject.toml": b"[project]\nversion = '1.4.0'\n",
    "requirements.txt": b"fastapi\n",
    "start.sh": b"#!/bin/sh\necho new entrypoint\n",
}


class FakeReleaseClient:
    """Stands in for ReleaseClient; resolves every version to a fixed URL."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.requested = []

    async def resolve_artifact_url(self, version: str) -> str:
        self.requested.append(version)
        if self.error is not None:
            raise self.error
        return f"https://example.invalid/gamelog-built-{version}.tar.gz"


@pytest.fixture
def updater_config(tmp_path):
    """UpdaterConfig pointing at a throwaway directory layout."""
    from gamelog.config import UpdaterConfig

    app_dir = tmp_path / "app"
    app_dir.mkdir()
    (app_dir / "gamelog").mkdir()
    (app_dir / "gamelog" / "__init__.py").write_text("__version__ = '1.3.0'\n")
    (app_dir / "gamelog" / "main.py").write_text("# old main\n")
    (app_dir / "pyproject.toml").write_text("[project]\nversion = '1.3.0'\n")
    (app_dir / "requirements.txt").write_text("fastapi\n")
    (app_dir / "start.sh").write_text("#!/bin/sh\necho old entrypoint\n")

    return UpdaterConfig(
        app_dir=app_dir,
        staging_dir=tmp_path / "work" / "gamelog-update",
        backup_dir=tmp_path / "work" / "gamelog-backup",
        download_dir=tmp_path / "downloads",
        critical_paths=["gamelog", "web", "pyproject.toml", "requirements.txt"],
        migration_command=[sys.executable, "-c", "pass"],
        restart_delay=0,
        download_timeout=5,
    )


@pytest.fixture
def updater(updater_config):
    """InPlaceUpdater with a fake release registry and real filesystem work."""
    from gamelog.updater import InPlaceUpdater

    return InPlaceUpdater(updater_config, release_client=FakeReleaseClient())


@pytest.fixture
def fake_download(updater, monkeypatch):
    """Replace the HTTP download with a freshly built local archive."""
    calls = []

    async def download(url: str, version: str) -> Path:
        calls.append(url)
        dest = updater.download_dir / f"gamelog-{version}.tar.gz"
        return make_archive(dest, RELEASE_FILES)

    monkeypatch.setattr(updater, "download_package", download)
    return calls
