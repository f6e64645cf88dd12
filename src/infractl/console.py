#!/usr/bin/env python3
"""
Console output helpers and logging setup.

Operator-facing messages go through info/success/warn/error; diagnostic
tracing goes through the logging module at DEBUG level.
"""

from __future__ import annotations

import logging
import sys

# Color codes for output
BLUE = '\033[94m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
RESET = '\033[0m'

logger = logging.getLogger(__name__)


def info(msg: str) -> None:
    print(f"{BLUE}[INFO]{RESET} {msg}", flush=True)


def success(msg: str) -> None:
    print(f"{GREEN}[SUCCESS]{RESET} {msg}", flush=True)


def warn(msg: str) -> None:
    print(f"{YELLOW}[WARN]{RESET} {msg}", file=sys.stderr, flush=True)


def error(msg: str) -> None:
    """Print an error message. Does not exit; callers decide the exit code."""
    print(f"{RED}[ERROR]{RESET} {msg}", file=sys.stderr, flush=True)


def header(title: str) -> None:
    print(f"\n{BLUE}{title}{RESET}", flush=True)
    print("=" * len(title), flush=True)


def confirm(prompt: str, default: bool = False, strict: bool = False, assume_yes: bool = False) -> bool:
    """
    Ask the operator a yes/no question.

    Args:
        prompt: Question shown to the operator
        default: Answer used for an empty reply
        strict: Require the literal word 'yes' (destructive operations)
        assume_yes: Skip the prompt and answer yes

    Returns:
        True when the operator agreed
    """
    if assume_yes:
        return True
    if strict:
        suffix = " Type 'yes' to confirm: "
    else:
        suffix = " [Y/n]: " if default else " [y/N]: "
    try:
        reply = input(f"{YELLOW}{prompt}{RESET}{suffix}").strip().lower()
    except EOFError:
        return default and not strict
    if strict:
        return reply == 'yes'
    if not reply:
        return default
    return reply in ('y', 'yes')


def mask_secret(value: str | None) -> str:
    """
    Mask a secret for display: first 4 and last 4 characters around 8 stars.

    Examples:
        >>> mask_secret('abcdefghijklmnop')
        'abcd********mnop'
        >>> mask_secret('')
        'Not set'
    """
    if not value:
        return "Not set"
    if len(value) <= 8:
        return "*" * 8
    return f"{value[:4]}{'*' * 8}{value[-4:]}"


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR
    }

    level = level_map.get(str(log_level).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True  # Reconfigure if already configured
    )
    logger.setLevel(level)

    if level == logging.DEBUG:
        logger.debug(f"Logging configured: {str(log_level).upper()}")
