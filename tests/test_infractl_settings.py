"""
Settings file parsing, in-place updates and atomic writes.
"""

import os
import stat
from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from infractl.errors import SettingsFileError  # noqa: E402
from infractl.settings import SettingsFile, parse_line  # noqa: E402


SAMPLE = """# Database
POSTGRES_USER=rustcare
POSTGRES_PASSWORD="change_me"
export REDIS_PASSWORD='quoted value'

MINIO_ROOT_PASSWORD=abc123 # inline comment
"""


class TestParseLine:
    def test_plain_pair(self):
        assert parse_line("KEY=value") == ("KEY", "value")

    def test_comment_and_blank_lines_are_skipped(self):
        assert parse_line("# KEY=value") is None
        assert parse_line("   ") is None

    def test_quotes_and_export_prefix(self):
        assert parse_line("export NAME='a b'") == ("NAME", "a b")
        assert parse_line('NAME="x#y"') == ("NAME", "x#y")

    def test_value_may_contain_equals(self):
        assert parse_line("URL=postgres://u:p@h/db?a=b") == ("URL", "postgres://u:p@h/db?a=b")

    def test_invalid_key_is_rejected(self):
        assert parse_line("1BAD=value") is None


class TestSettingsFile:
    def test_reads_values(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(SAMPLE)

        settings = SettingsFile(path)

        assert settings.get("POSTGRES_USER") == "rustcare"
        assert settings.get("POSTGRES_PASSWORD") == "change_me"
        assert settings.get("REDIS_PASSWORD") == "quoted value"
        assert settings.get("MINIO_ROOT_PASSWORD") == "abc123"
        assert settings.get("MISSING") is None

    def test_update_rewrites_in_place_and_appends_new_keys(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(SAMPLE)

        settings = SettingsFile(path)
        settings.update({"POSTGRES_PASSWORD": "s3cret", "NEW_KEY": "v"})

        lines = path.read_text().splitlines()
        assert lines[0] == "# Database"
        assert lines[2] == "POSTGRES_PASSWORD=s3cret"
        assert lines[-1] == "NEW_KEY=v"
        assert SettingsFile(path).get("POSTGRES_PASSWORD") == "s3cret"

    def test_values_needing_quotes_round_trip(self, tmp_path):
        path = tmp_path / ".env"
        settings = SettingsFile(path)
        settings.update({"A": "has space", "B": 'has "quote"', "C": ""})

        reread = SettingsFile(path)
        assert reread.get("A") == "has space"
        assert reread.get("B") == 'has "quote"'
        assert reread.get("C") == ""

    def test_save_leaves_no_temp_files_and_keeps_mode(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\n")
        os.chmod(path, 0o600)

        SettingsFile(path).update({"A": "2"})

        assert sorted(p.name for p in tmp_path.iterdir()) == [".env"]
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_placeholder_detection(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(SAMPLE)
        settings = SettingsFile(path, placeholders=["change_me", "changeme"])

        assert settings.is_placeholder("change_me")
        assert settings.is_placeholder("CHANGE_ME_IN_PRODUCTION")
        assert settings.is_placeholder("")
        assert not settings.is_placeholder("abc123")
        assert settings.placeholder_keys(["POSTGRES_PASSWORD", "MINIO_ROOT_PASSWORD", "ABSENT"]) == ["POSTGRES_PASSWORD"]

    def test_backup_is_private_copy(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\n")

        backup = SettingsFile(path).backup("20240101_120000")

        assert backup.name == ".env.backup.20240101_120000"
        assert backup.read_text() == "A=1\n"
        assert stat.S_IMODE(backup.stat().st_mode) == 0o600

    def test_require_raises_when_missing(self, tmp_path):
        with pytest.raises(SettingsFileError, match="not found"):
            SettingsFile(tmp_path / ".env").require()

    def test_invalid_key_rejected_on_set(self, tmp_path):
        with pytest.raises(ValueError, match="Invalid settings key"):
            SettingsFile(tmp_path / ".env").set("BAD KEY", "x")
