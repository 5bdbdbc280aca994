import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from site_deployer.core.config import Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("PORT", raising=False)
    settings = Settings()
    assert settings.port == 8888
    assert settings.max_size_mb == 2
    assert settings.max_size_bytes == 2 * 1024 * 1024
    assert settings.purge_on_startup is True
    assert os.path.isabs(settings.root)
    assert settings.root.endswith("site")


def test_env_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("SITE_DEPLOYER_ROOT", str(tmp_path / "www"))
    monkeypatch.setenv("SITE_DEPLOYER_MAX_SIZE_MB", "5")
    monkeypatch.setenv("SITE_DEPLOYER_LOG_FORMAT", "CONSOLE")
    monkeypatch.setenv("PORT", "9000")

    settings = Settings()

    assert settings.root == str(tmp_path / "www")
    assert settings.max_size_bytes == 5 * 1024 * 1024
    assert settings.log_format == "console"
    assert settings.port == 9000


def test_relative_root_made_absolute(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert Settings(root="public").root == str(tmp_path / "public")


@pytest.mark.parametrize("field,value", [("max_size_mb", 0), ("history_size", -1), ("log_format", "xml")])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(**{field: value})
