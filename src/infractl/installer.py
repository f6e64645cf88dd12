#!/usr/bin/env python3
"""
systemd installation of the compose stack.

`install` bootstraps settings, pulls and starts the stack, and registers a
oneshot unit that runs `compose up -d` at boot. `uninstall` reverses the unit
and stops the stack; volumes are kept.
"""

from __future__ import annotations

import logging
import os
import shutil
from importlib import resources
from pathlib import Path

from .bootstrap import check_runtime_dependencies, ensure_settings_file
from .compose import ComposeProject, run_cmd
from .config_schema import StackConfig
from .console import header, info, success, warn
from .errors import InfractlError
from .render_utils import render_template_text

logger = logging.getLogger(__name__)

UNIT_TEMPLATE = 'stack.service.template'


def require_root() -> None:
    if os.geteuid() != 0:
        raise InfractlError("This command must be run as root (use sudo)")


def unit_path(config: StackConfig) -> Path:
    return Path(config.install.get('unit_dir', '/etc/systemd/system')) / config.install.get(
        'unit_name', f"{config.project_name}.service"
    )


def render_unit(stack_dir: Path, config: StackConfig, compose_command: list[str]) -> str:
    executable = shutil.which(compose_command[0]) or compose_command[0]
    text = resources.files('infractl').joinpath('templates', UNIT_TEMPLATE).read_text(encoding='utf-8')
    return render_template_text(text, {
        'DESCRIPTION': f"{config.project_name} infrastructure stack",
        'WORKING_DIRECTORY': str(stack_dir),
        'COMPOSE_COMMAND': ' '.join([executable, *compose_command[1:]]),
        'COMPOSE_FILE': config.compose_file,
    }, UNIT_TEMPLATE)


def install(stack_dir: Path, config: StackConfig, compose: ComposeProject) -> Path:
    require_root()
    check_runtime_dependencies(['docker', 'systemctl'])
    header(f"Installing {config.project_name} stack")

    ensure_settings_file(stack_dir, config)
    compose.pull()
    compose.up()

    path = unit_path(config)
    path.write_text(render_unit(stack_dir, config, compose.command), encoding='utf-8')
    info(f"Wrote {path}")
    run_cmd(['systemctl', 'daemon-reload'])
    run_cmd(['systemctl', 'enable', path.name])

    success("Installation complete")
    print(f"  Status: systemctl status {path.stem}")
    print("  Logs:   infractl logs follow")
    return path


def uninstall(stack_dir: Path, config: StackConfig, compose: ComposeProject) -> None:
    require_root()
    header(f"Uninstalling {config.project_name} stack")
    path = unit_path(config)

    if run_cmd(['systemctl', 'is-active', '--quiet', path.name], check=False).returncode == 0:
        info("Stopping service...")
        run_cmd(['systemctl', 'stop', path.name])
    if run_cmd(['systemctl', 'is-enabled', '--quiet', path.name], check=False).returncode == 0:
        info("Disabling service...")
        run_cmd(['systemctl', 'disable', path.name])

    if compose.compose_path.exists():
        info("Stopping containers...")
        compose.down()

    if path.exists():
        path.unlink()
        run_cmd(['systemctl', 'daemon-reload'])
        info(f"Removed {path}")
    else:
        warn(f"{path} not found")

    success("Uninstalled; data volumes were kept (remove them with: infractl clean)")
