"""
CLI argument parsing, dispatch and exit codes.
"""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import infractl  # noqa: E402
from infractl import cli  # noqa: E402
from infractl.errors import DependencyError  # noqa: E402


@pytest.fixture
def stack_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("INFRACTL_DIR", str(tmp_path))
    monkeypatch.setenv("SKIP_DEPENDENCY_CHECK", "1")
    monkeypatch.delenv("INFRACTL_LOG_LEVEL", raising=False)
    return tmp_path


class TestParser:
    def test_unknown_command_prints_usage_and_fails(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_arguments(["frobnicate"])
        assert excinfo.value.code != 0
        err = capsys.readouterr().err
        assert "usage:" in err
        assert "invalid choice" in err

    def test_unknown_action_fails(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_arguments(["db", "drop"])
        assert excinfo.value.code != 0
        assert "usage:" in capsys.readouterr().err

    def test_no_command_fails(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_arguments([])
        assert excinfo.value.code == 1

    def test_missing_required_argument_exits_1(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_arguments(["passwords", "reset"])
        assert excinfo.value.code == 1
        assert "requires a SERVICE argument" in capsys.readouterr().err

    def test_monitor_requires_container(self):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_arguments(["capture", "monitor"])
        assert excinfo.value.code == 1

    def test_version_flag_reports_package_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.parse_arguments(["--version"])

        assert exc.value.code == 0
        assert capsys.readouterr().out.strip() == f"infractl {infractl.__version__}"

    def test_valid_forms(self):
        assert cli.parse_arguments(["logs"]).target is None
        assert cli.parse_arguments(["logs", "follow"]).target == "follow"
        args = cli.parse_arguments(["passwords", "reset", "postgres"])
        assert (args.action, args.service) == ("reset", "postgres")
        assert cli.parse_arguments(["capture", "start"]).service is None


class TestMain:
    def test_passwords_show_runs_without_docker(self, stack_dir, capsys):
        (stack_dir / ".env").write_text("POSTGRES_PASSWORD=abcdefghijklmnop\n")

        assert cli.main(["passwords", "show"]) == 0
        assert "abcd********mnop" in capsys.readouterr().out

    def test_unknown_password_service_exits_1(self, stack_dir, capsys):
        (stack_dir / ".env").write_text("POSTGRES_PASSWORD=x\n")

        assert cli.main(["passwords", "reset", "nosuch"]) == 1
        assert "Unknown service: nosuch" in capsys.readouterr().err

    def test_missing_settings_file_exits_1(self, stack_dir, capsys):
        assert cli.main(["templates"]) == 1
        assert "Settings file not found" in capsys.readouterr().err

    def test_missing_dependency_exits_1(self, stack_dir, monkeypatch, capsys):
        monkeypatch.delenv("SKIP_DEPENDENCY_CHECK")
        with patch.object(cli, "check_runtime_dependencies",
                          side_effect=DependencyError([("docker", "install docker")])):
            assert cli.main(["status"]) == 1
        assert "Missing required dependencies: docker" in capsys.readouterr().err

    def test_interrupt_exits_130(self, stack_dir):
        interrupted = cli.COMMANDS["status"]._replace(handler=Mock(side_effect=KeyboardInterrupt()))
        with patch.dict(cli.COMMANDS, {"status": interrupted}):
            assert cli.main(["status"]) == 130

    def test_urls_lists_services(self, stack_dir, capsys):
        assert cli.main(["urls"]) == 0
        out = capsys.readouterr().out
        assert "http://localhost:9001" in out
        assert "http://localhost:16686" in out
