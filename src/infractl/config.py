#!/usr/bin/env python3
"""
Stack configuration loading.

Packaged defaults.toml is deep-merged with an optional infractl.toml in the
stack directory, then parsed into a StackConfig.
"""

from __future__ import annotations

import logging
import tomllib
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional

import tomli_w

from .config_constants import PACKAGED_DEFAULTS, STACK_CONFIG_OVERRIDES
from .config_schema import StackConfig, parse_stack_config
from .errors import ConfigError

logger = logging.getLogger(__name__)


def load_packaged_defaults() -> Dict[str, Any]:
    text = resources.files('infractl').joinpath(PACKAGED_DEFAULTS).read_text(encoding='utf-8')
    return tomllib.loads(text)


def deep_merge_configs(base: dict, override: dict) -> dict:
    """
    Deep merge two configs (key-level merge).

    Nested tables merge recursively; scalars, lists and new keys from the
    override replace or extend the base.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_configs(result[key], value)
        else:
            if key in result:
                logger.debug(f"  Override: {key} = {value} (was: {result[key]})")
            result[key] = value

    return result


def load_override_config(stack_dir: Path) -> Dict[str, Any]:
    path = Path(stack_dir) / STACK_CONFIG_OVERRIDES
    if not path.exists():
        return {}
    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def load_raw_config(stack_dir: Path) -> Dict[str, Any]:
    return deep_merge_configs(load_packaged_defaults(), load_override_config(stack_dir))


def load_stack_config(stack_dir: Path) -> StackConfig:
    """
    Load the configuration for a stack directory.

    Raises:
        ConfigError: If the override file is not valid TOML or a field is invalid
    """
    raw = load_raw_config(stack_dir)
    try:
        config = parse_stack_config(raw)
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Invalid configuration for {stack_dir}: {e}") from e
    logger.debug(f"Loaded configuration for project {config.project_name} ({len(config.services)} services)")
    return config


def ensure_override_config(stack_dir: Path, project_name: Optional[str] = None) -> Optional[Path]:
    """
    Write a starter infractl.toml when the stack has none.

    Only the [stack] table is written; everything else keeps following the
    packaged defaults until the operator adds it.

    Returns:
        Path of the created file, or None when it already existed
    """
    path = Path(stack_dir) / STACK_CONFIG_OVERRIDES
    if path.exists():
        return None

    stack_defaults = load_packaged_defaults()['stack']
    starter = {
        'stack': {
            'project_name': project_name or stack_defaults['project_name'],
            'compose_file': stack_defaults['compose_file'],
            'volume_prefix': stack_defaults['volume_prefix'],
        }
    }
    with open(path, 'wb') as f:
        tomli_w.dump(starter, f)
    return path
