"""
Pytest configuration and fixtures for Site Deployer tests.
"""

import io
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest


def make_tar(files: Dict[str, Optional[bytes]], compression: str = "", extra: tuple = ()) -> bytes:
    """Build a tar archive in memory.

    ``files`` maps entry names to content; ``None`` makes a directory entry.
    ``extra`` holds ready-made TarInfo objects (symlinks and such).
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=f"w:{compression}") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = len(data)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(data))
        for info in extra:
            tar.addfile(info)
    return buf.getvalue()


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    root.mkdir()
    return root


@pytest.fixture
def tar_bytes():
    return make_tar


def artifacts_in(directory: Path) -> list:
    """Names of staging or backup leftovers directly inside ``directory``."""
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(("-tmp", "-backup")))
