#!/usr/bin/env python3
"""Shared CLI helpers."""

from __future__ import annotations

import os
from pathlib import Path

from . import __version__


def get_cli_version() -> str:
    return __version__


def resolve_stack_dir(env: dict | None = None) -> Path:
    """Return the stack directory: $INFRACTL_DIR when set, else the current directory."""
    env = os.environ if env is None else env
    override = env.get("INFRACTL_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd()


def assume_yes(env: dict | None = None) -> bool:
    env = os.environ if env is None else env
    return env.get("INFRACTL_ASSUME_YES", "").strip().lower() in ("1", "true", "yes")
