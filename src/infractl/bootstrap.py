#!/usr/bin/env python3
"""
Environment bootstrap: required tools and the settings file.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .compose import COMPOSE_INSTALL_URL, detect_compose_command
from .config_constants import SECRET_FILE_MODE
from .config_schema import StackConfig
from .console import GREEN, RED, RESET, YELLOW, header, info, success, warn
from .errors import DependencyError
from .passwords import generate_password
from .settings import SettingsFile

logger = logging.getLogger(__name__)

INSTALL_HINTS = {
    'docker': 'https://docs.docker.com/engine/install/',
    'openssl': 'install the openssl package',
    'cargo': 'https://rustup.rs/',
    'node': 'https://nodejs.org/',
    'npm': 'https://nodejs.org/',
    'systemctl': 'systemd is required',
}


def check_runtime_dependencies(tools: Optional[List[str]] = None, compose: bool = True) -> None:
    """
    Validate that required runtime dependencies are installed.

    Raises:
        DependencyError: Listing every missing tool
    """
    # Allow tests to bypass dependency checking
    if os.getenv('SKIP_DEPENDENCY_CHECK') == '1':
        return

    logger.debug("Validating runtime dependencies...")
    missing_deps = []

    for tool in tools if tools is not None else ['docker']:
        if tool == 'docker':
            try:
                result = subprocess.run(
                    ['docker', '--version'],
                    capture_output=True,
                    text=True,
                    timeout=5
                )
                if result.returncode != 0:
                    missing_deps.append(('docker', INSTALL_HINTS['docker']))
            except (FileNotFoundError, subprocess.TimeoutExpired):
                missing_deps.append(('docker', INSTALL_HINTS['docker']))
        elif shutil.which(tool) is None:
            missing_deps.append((tool, INSTALL_HINTS.get(tool, 'install it and retry')))

    if compose and not missing_deps:
        try:
            detect_compose_command()
        except DependencyError:
            missing_deps.append(('docker compose', COMPOSE_INSTALL_URL))

    if missing_deps:
        for name, hint in missing_deps:
            print(f"  {RED}✗{RESET} {name}: {hint}", flush=True)
        raise DependencyError(missing_deps)


def minimal_settings(config: StackConfig) -> Dict[str, str]:
    """Default settings used when the stack ships no example file."""
    values = {k: str(v) for k, v in config.bootstrap.get('minimal_settings', {}).items()}
    for key, length in config.bootstrap.get('generated_keys', {}).items():
        values[key] = generate_password(int(length))
    return values


def ensure_settings_file(stack_dir: Path, config: StackConfig) -> tuple[SettingsFile, bool]:
    """
    Make sure the settings file exists; never overwrite an existing one.

    Returns:
        (settings, created) where created is True when the file was written now
    """
    path = stack_dir / config.settings_file
    if path.exists():
        logger.debug(f"{path} already exists")
        return SettingsFile(path, config.placeholders), False

    template = stack_dir / config.settings_template
    if template.exists():
        shutil.copyfile(template, path)
        os.chmod(path, SECRET_FILE_MODE)
        success(f"Created {config.settings_file} from {config.settings_template}")
        return SettingsFile(path, config.placeholders), True

    settings = SettingsFile(path, config.placeholders)
    settings.update(minimal_settings(config))
    os.chmod(path, SECRET_FILE_MODE)
    warn(f"No {config.settings_template} found; wrote minimal {config.settings_file} with generated secrets")
    return settings, True


def settings_need_passwords(settings: SettingsFile, config: StackConfig) -> bool:
    """True when any credential key still holds a placeholder value."""
    return settings.has_placeholders(config.secret_keys())


def check_environment(stack_dir: Path, config: StackConfig) -> bool:
    """
    Report tool availability, the settings file and sibling project directories.

    Returns:
        True when every required tool is present
    """
    header("Checking environment")
    ok = True

    required = list(config.bootstrap.get('required_tools', ['docker']))
    optional = list(config.bootstrap.get('dev_tools', [])) + list(config.bootstrap.get('optional_tools', []))
    for tool in required + optional:
        found = shutil.which(tool) is not None
        if found:
            print(f"  {GREEN}✓{RESET} {tool}")
        elif tool in required:
            print(f"  {RED}✗{RESET} {tool} (required: {INSTALL_HINTS.get(tool, '')})")
            ok = False
        else:
            print(f"  {YELLOW}-{RESET} {tool} (optional)")

    try:
        compose_cmd = ' '.join(detect_compose_command())
        print(f"  {GREEN}✓{RESET} {compose_cmd}")
    except DependencyError:
        print(f"  {RED}✗{RESET} docker compose (required: {COMPOSE_INSTALL_URL})")
        ok = False

    settings, created = ensure_settings_file(stack_dir, config)
    if not created:
        info(f"{config.settings_file} exists")
    if settings_need_passwords(settings, config):
        warn(f"{config.settings_file} still contains placeholder passwords: run 'infractl passwords generate'")

    for sibling in config.bootstrap.get('sibling_dirs', []):
        if (stack_dir / sibling).is_dir():
            print(f"  {GREEN}✓{RESET} {sibling}")
        else:
            print(f"  {YELLOW}-{RESET} {sibling} not found")

    return ok
