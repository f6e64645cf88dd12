#!/usr/bin/env python3
"""
Secret generation and rotation.

Passwords are drawn from [A-Za-z0-9] with the secrets module, so every value
has exactly the requested length and never contains '=', '+' or '/'.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
import string
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import bcrypt

from .config_constants import (
    PASSWORD_RECORD_PATTERN,
    SECRET_FILE_MODE,
    TIMESTAMP_FORMAT,
    backup_name,
)
from .config_schema import PasswordSpec, StackConfig
from .console import BLUE, GREEN, RED, RESET, YELLOW, header, info, mask_secret, success
from .settings import SettingsFile

logger = logging.getLogger(__name__)

PASSWORD_ALPHABET = string.ascii_letters + string.digits

# bcrypt modular crypt format: $2b$<cost>$<53 chars of salt+hash>
BCRYPT_HASH_RE = re.compile(r'\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}')

# Values this long are shown truncated in summaries
LONG_SECRET = 48


def generate_password(length: int = 32) -> str:
    """
    Generate a random alphanumeric password of exactly `length` characters.

    Raises:
        ValueError: If length is not positive
    """
    if length < 1:
        raise ValueError("Password length must be positive")
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _display(value: str) -> str:
    if len(value) >= LONG_SECRET:
        return f"{value[:20]}..."
    return value


def backup_settings(settings: SettingsFile, stamp: Optional[str] = None) -> Path:
    target = settings.backup(stamp)
    success(f"Backed up {settings.path.name} to {target.name}")
    return target


def update_mail_hashes(sql_path: Path, hashes: Dict[str, str], stamp: Optional[str] = None) -> bool:
    """
    Write bcrypt hashes for mail accounts into the SQL seed.

    A line mentioning '<account>@' gets that account's hash; any other bcrypt
    hash in the file gets the admin hash. The file is backed up first.

    Returns:
        True if the file existed and was updated
    """
    if not sql_path.exists():
        logger.debug(f"No SQL seed at {sql_path}; skipping mail hash update")
        return False

    stamp = stamp or datetime.now().strftime(TIMESTAMP_FORMAT)
    shutil.copy2(sql_path, sql_path.with_name(backup_name(sql_path.name, stamp)))

    fallback = hashes.get('admin')
    lines = sql_path.read_text(encoding='utf-8').splitlines(keepends=True)
    replaced = 0
    for idx, line in enumerate(lines):
        if not BCRYPT_HASH_RE.search(line):
            continue
        account_hash = next(
            (h for account, h in hashes.items() if f"'{account}@" in line or f'"{account}@' in line),
            fallback,
        )
        if account_hash is None:
            continue
        # lambda avoids re interpreting backslashes in the replacement
        lines[idx] = BCRYPT_HASH_RE.sub(lambda _m: account_hash, line)
        replaced += 1

    sql_path.write_text(''.join(lines), encoding='utf-8')
    success(f"Updated {replaced} password hash(es) in {sql_path.name}")
    return True


def write_password_record(stack_dir: Path, values: Dict[str, str], config: StackConfig,
                          stamp: str) -> Path:
    """Write generated values to .passwords.<stamp>.txt with mode 600."""
    path = stack_dir / PASSWORD_RECORD_PATTERN.format(stamp=stamp)
    labels = {spec.key: spec.label for spec in config.passwords.values()}
    lines = [
        f"# {config.project_name} passwords generated {stamp}",
        "# Keep this file secure and delete it once stored elsewhere.",
        "",
    ]
    for key, value in values.items():
        lines.append(f"# {labels.get(key, key)}")
        lines.append(f"{key}={value}")
    path.write_text('\n'.join(lines) + '\n', encoding='utf-8')
    os.chmod(path, SECRET_FILE_MODE)
    return path


def _mail_hashes(config: StackConfig, values: Dict[str, str]) -> Dict[str, str]:
    rounds = int(config.mail.get('bcrypt_rounds', 12))
    hashes = {}
    for spec in config.passwords.values():
        if spec.mail_account and spec.key in values:
            hashes[spec.mail_account] = hash_password(values[spec.key], rounds)
    return hashes


def generate_all_passwords(settings: SettingsFile, config: StackConfig, stack_dir: Path,
                           stamp: Optional[str] = None) -> Dict[str, str]:
    """
    Generate every configured password and write them in one atomic update.

    Returns:
        Mapping of settings key to generated value
    """
    settings.require()
    stamp = stamp or datetime.now().strftime(TIMESTAMP_FORMAT)

    header("Generating secure passwords")
    backup_settings(settings, stamp)

    values = {spec.key: generate_password(spec.length) for spec in config.passwords.values()}
    settings.update(values)
    success(f"Wrote {len(values)} passwords to {settings.path.name}")

    hashes = _mail_hashes(config, values)
    if hashes:
        sql_seed = stack_dir / config.mail.get('sql_seed', 'stalwart/sql/init.sql')
        update_mail_hashes(sql_seed, hashes, stamp)

    print()
    for spec in config.passwords.values():
        print(f"  {spec.label:<16} {GREEN}{_display(values[spec.key])}{RESET}")

    record = write_password_record(stack_dir, values, config, stamp)
    print()
    info(f"Passwords recorded in {record.name} (mode 600)")
    print(f"{YELLOW}Restart services to apply: infractl restart{RESET}")
    return values


def reset_service_password(settings: SettingsFile, config: StackConfig, stack_dir: Path,
                           name: str) -> tuple[PasswordSpec, str]:
    """
    Regenerate one password selected by name or alias.

    Raises:
        UnknownServiceError: If no password spec matches the name
    """
    spec = config.password(name)
    settings.require()

    value = generate_password(spec.length)
    settings.update({spec.key: value})
    success(f"New {spec.label} password: {_display(value)}")

    if spec.mail_account:
        hashed = hash_password(value, int(config.mail.get('bcrypt_rounds', 12)))
        print(f"  bcrypt hash: {hashed}")
        sql_seed = stack_dir / config.mail.get('sql_seed', 'stalwart/sql/init.sql')
        update_mail_hashes(sql_seed, {spec.mail_account: hashed})

    if spec.restart.startswith('('):
        print(f"{YELLOW}Apply it: {spec.restart.strip('()')}{RESET}")
    elif spec.restart:
        print(f"{YELLOW}Apply it: docker compose restart {spec.restart}{RESET}")
    return spec, value


def show_passwords(settings: SettingsFile, config: StackConfig) -> Dict[str, bool]:
    """Print masked status for every credential key. Returns key -> is_set."""
    settings.require()
    labels = {spec.key: spec.label for spec in config.passwords.values()}

    header("Current passwords")
    status = {}
    for key in config.secret_keys():
        value = settings.get(key)
        is_set = not settings.is_placeholder(value)
        status[key] = is_set
        color = GREEN if is_set else RED
        shown = mask_secret(value) if is_set else "Not set"
        print(f"  {BLUE}{labels.get(key, key):<20}{RESET} {color}{shown}{RESET}")
    return status
