"""
Environment bootstrap: dependency checks and settings file creation.
"""

import os
import stat
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from infractl.bootstrap import (  # noqa: E402
    check_runtime_dependencies,
    ensure_settings_file,
    settings_need_passwords,
)
from infractl.config import load_stack_config  # noqa: E402
from infractl.errors import DependencyError  # noqa: E402


class TestDependencyChecking:
    def test_skips_check_when_env_var_set(self, monkeypatch):
        monkeypatch.setenv("SKIP_DEPENDENCY_CHECK", "1")
        with patch("subprocess.run", side_effect=FileNotFoundError()) as mock_run:
            check_runtime_dependencies()
        mock_run.assert_not_called()

    def test_missing_docker_is_fatal(self, monkeypatch):
        monkeypatch.delenv("SKIP_DEPENDENCY_CHECK", raising=False)
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(DependencyError, match="docker"):
                check_runtime_dependencies()

    def test_missing_compose_is_fatal(self, monkeypatch):
        monkeypatch.delenv("SKIP_DEPENDENCY_CHECK", raising=False)
        with patch("subprocess.run") as mock_run, patch("shutil.which", return_value=None):
            mock_run.side_effect = [Mock(returncode=0), Mock(returncode=1)]
            with pytest.raises(DependencyError) as excinfo:
                check_runtime_dependencies()
        assert [name for name, _ in excinfo.value.missing] == ["docker compose"]

    def test_legacy_compose_binary_is_accepted(self, monkeypatch):
        monkeypatch.delenv("SKIP_DEPENDENCY_CHECK", raising=False)
        with patch("subprocess.run") as mock_run, \
                patch("shutil.which", return_value="/usr/bin/docker-compose"):
            mock_run.side_effect = [Mock(returncode=0), FileNotFoundError()]
            check_runtime_dependencies()

    def test_other_tools_checked_with_which(self, monkeypatch):
        monkeypatch.delenv("SKIP_DEPENDENCY_CHECK", raising=False)
        with patch("shutil.which", return_value=None):
            with pytest.raises(DependencyError, match="systemctl"):
                check_runtime_dependencies(["systemctl"], compose=False)


class TestEnsureSettingsFile:
    def test_copies_example_when_missing(self, tmp_path):
        (tmp_path / ".env.example").write_text("POSTGRES_PASSWORD=change_me\n")
        config = load_stack_config(tmp_path)

        settings, created = ensure_settings_file(tmp_path, config)

        assert created is True
        assert (tmp_path / ".env").read_text() == "POSTGRES_PASSWORD=change_me\n"
        assert stat.S_IMODE((tmp_path / ".env").stat().st_mode) == 0o600
        assert settings_need_passwords(settings, config)

    def test_is_idempotent_and_never_overwrites(self, tmp_path):
        (tmp_path / ".env.example").write_text("POSTGRES_PASSWORD=change_me\n")
        config = load_stack_config(tmp_path)
        ensure_settings_file(tmp_path, config)
        (tmp_path / ".env").write_text("POSTGRES_PASSWORD=real-value\n")

        settings, created = ensure_settings_file(tmp_path, config)

        assert created is False
        assert settings.get("POSTGRES_PASSWORD") == "real-value"
        assert (tmp_path / ".env").read_text() == "POSTGRES_PASSWORD=real-value\n"

    def test_writes_minimal_settings_without_example(self, tmp_path):
        config = load_stack_config(tmp_path)

        settings, created = ensure_settings_file(tmp_path, config)

        assert created is True
        assert settings.get("POSTGRES_DB") == "rustcare_dev"
        assert settings.get("POSTGRES_USER") == "rustcare"
        assert len(settings.get("POSTGRES_PASSWORD")) == 32
        assert len(settings.get("JWT_SECRET")) == 64
        assert os.path.exists(tmp_path / ".env")
