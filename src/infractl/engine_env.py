#!/usr/bin/env python3
"""
Application (.env) generation for the engine that consumes this stack.

The engine's settings are derived from the infra settings file: connection
credentials come from it (or from the database's first-start log when the
capture step has not stored them yet), missing secrets are generated, and a
JWT RSA key pair is created with openssl when absent. Secrets that already
exist in the engine's .env are reused so that sessions survive a rerun.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
import shutil
from datetime import datetime
from importlib import resources
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from .compose import ComposeProject, container_logs, container_port, run_cmd
from .config_constants import (
    GENERATED_PASSWORDS_MARKER,
    PACKAGED_ENGINE_TEMPLATE,
    PUBLIC_FILE_MODE,
    SECRET_FILE_MODE,
    TIMESTAMP_FORMAT,
)
from .config_schema import StackConfig
from .console import header, info, success, warn
from .errors import DependencyError, SettingsFileError
from .passwords import generate_password
from .render_utils import render_template_text
from .settings import SettingsFile

logger = logging.getLogger(__name__)

# Values the engine keeps across regenerations
PERSISTENT_SECRETS = ('MASTER_ENCRYPTION_KEY', 'SESSION_SECRET', 'CSRF_SECRET', 'API_KEY_SALT')

# Infra settings that engine-env may generate and write back
INFRA_WRITE_BACK = ('POSTGRES_PASSWORD', 'MINIO_ROOT_USER', 'MINIO_ROOT_PASSWORD', 'SMTP_PASSWORD', 'REDIS_PASSWORD')

DEFAULT_CREDENTIAL_VALUES = ('postgres', 'minioadmin')


def _b64_secret(num_bytes: int) -> str:
    return base64.b64encode(secrets.token_bytes(num_bytes)).decode('ascii')


def scrape_logged_password(log_text: str, key: str = 'RUSTCARE_PASSWORD') -> Optional[str]:
    """Return the value of the last `KEY=value` line in a log, if any."""
    value = None
    prefix = f"{key}="
    for line in log_text.splitlines():
        idx = line.find(prefix)
        if idx != -1:
            value = line[idx + len(prefix):].strip().strip('"\'') or value
    return value


def load_engine_template() -> str:
    return resources.files('infractl').joinpath('templates', PACKAGED_ENGINE_TEMPLATE).read_text(encoding='utf-8')


def _is_unset(settings: SettingsFile, value: Optional[str]) -> bool:
    return settings.is_placeholder(value) or (value or '').strip() in DEFAULT_CREDENTIAL_VALUES


def build_engine_context(settings: SettingsFile, config: StackConfig, existing: Dict[str, str],
                         database_password: Optional[str] = None,
                         pg_port: Optional[int] = None) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Compute template variables for the engine .env.

    Returns:
        (context, generated) where generated holds infra settings that had to
        be created because the infra file only had placeholders
    """
    engine = config.engine
    generated: Dict[str, str] = {}

    def infra_value(key: str, length: int, fallback: Optional[str] = None) -> str:
        value = settings.get(key)
        if not _is_unset(settings, value):
            return value
        new = fallback or generate_password(length)
        generated[key] = new
        return new

    postgres_password = infra_value('POSTGRES_PASSWORD', 32)
    db_password = settings.get('RUSTCARE_DB_PASSWORD')
    if _is_unset(settings, db_password):
        db_password = database_password or postgres_password
    minio_user = settings.get('MINIO_ROOT_USER')
    if _is_unset(settings, minio_user):
        minio_user = config.project_name
        generated['MINIO_ROOT_USER'] = minio_user

    context = {
        'GENERATED_AT': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        'DATABASE_USER': settings.get('POSTGRES_USER') or engine.get('database_user', 'rustcare'),
        'DATABASE_NAME': settings.get('POSTGRES_DB') or engine.get('database_name', 'rustcare_dev'),
        'DATABASE_PASSWORD': db_password,
        'PG_PORT': str(pg_port or engine.get('postgres_port', 5432)),
        'REDIS_PASSWORD': infra_value('REDIS_PASSWORD', 24),
        'MINIO_ROOT_USER': minio_user,
        'MINIO_ROOT_PASSWORD': infra_value('MINIO_ROOT_PASSWORD', 32),
        'SMTP_USERNAME': settings.get('SMTP_USERNAME') or f"admin@{config.mail.get('domain', 'localhost')}",
        'SMTP_PASSWORD': infra_value('SMTP_PASSWORD', 24),
        'MAIL_DOMAIN': config.mail.get('domain', 'localhost'),
        'JWT_KEYS_DIR': engine.get('keys_dir', 'config/keys'),
        'MASTER_ENCRYPTION_KEY': existing.get('MASTER_ENCRYPTION_KEY') or _b64_secret(32),
        'SESSION_SECRET': existing.get('SESSION_SECRET') or generate_password(64),
        'CSRF_SECRET': existing.get('CSRF_SECRET') or generate_password(32),
        'API_KEY_SALT': existing.get('API_KEY_SALT') or _b64_secret(16),
    }
    return context, generated


def ensure_jwt_keys(keys_dir: Path) -> bool:
    """
    Generate an RSA key pair with openssl unless one exists.

    Returns:
        True if new keys were generated

    Raises:
        DependencyError: If openssl is not installed
    """
    private_key = keys_dir / 'jwt-private.pem'
    public_key = keys_dir / 'jwt-public.pem'
    if private_key.exists() and public_key.exists():
        info("JWT key pair already exists")
        return False

    if shutil.which('openssl') is None:
        raise DependencyError([('openssl', 'required to generate the JWT key pair')])

    keys_dir.mkdir(parents=True, exist_ok=True)
    run_cmd(['openssl', 'genrsa', '-out', str(private_key), '2048'])
    run_cmd(['openssl', 'rsa', '-in', str(private_key), '-pubout', '-out', str(public_key)])
    os.chmod(private_key, SECRET_FILE_MODE)
    os.chmod(public_key, PUBLIC_FILE_MODE)
    success(f"Generated JWT key pair in {keys_dir}")
    return True


def _write_generated_marker(stack_dir: Path, values: Dict[str, str]) -> Path:
    marker = stack_dir / GENERATED_PASSWORDS_MARKER
    lines = [f"# Generated by infractl engine-env on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"]
    lines += [f"{key}={value}" for key, value in values.items()]
    marker.write_text('\n'.join(lines) + '\n', encoding='utf-8')
    os.chmod(marker, SECRET_FILE_MODE)
    return marker


def engine_dir(stack_dir: Path, config: StackConfig) -> Optional[Path]:
    if not config.engine_dir:
        return None
    return (stack_dir / config.engine_dir).resolve()


def generate_engine_env(stack_dir: Path, config: StackConfig, settings: SettingsFile,
                        compose: Optional[ComposeProject] = None,
                        read_logs: Callable[[str], str] = container_logs,
                        port_lookup: Callable[[str, int], Optional[int]] = container_port) -> Path:
    """
    Write the engine's .env and JWT keys from the infra settings.

    Raises:
        SettingsFileError: If the infra settings file or engine directory is missing
    """
    settings.require()
    target_dir = engine_dir(stack_dir, config)
    if target_dir is None or not target_dir.is_dir():
        raise SettingsFileError(f"Engine directory not found: {config.engine_dir}")

    header("Generating engine environment")
    database_password = None
    pg_port = None
    if 'postgres' in config.services:
        descriptor = config.services['postgres']
        container = compose.container_for(descriptor) if compose else descriptor.container_name
        database_password = scrape_logged_password(read_logs(container))
        pg_port = port_lookup(container, int(config.engine.get('postgres_port', 5432)))
        logger.debug(f"Postgres container {container}: port={pg_port} logged_password={'yes' if database_password else 'no'}")

    env_path = target_dir / config.engine.get('env_file', '.env')
    existing = SettingsFile(env_path).as_dict() if env_path.exists() else {}

    context, generated = build_engine_context(settings, config, existing, database_password, pg_port)
    rendered = render_template_text(load_engine_template(), context, PACKAGED_ENGINE_TEMPLATE)
    env_path.write_text(rendered, encoding='utf-8')
    os.chmod(env_path, SECRET_FILE_MODE)
    success(f"Wrote {env_path}")

    ensure_jwt_keys(target_dir / context['JWT_KEYS_DIR'])

    # Containers read the infra file; keep it in step with the engine .env
    write_back = {k: v for k, v in generated.items() if k in INFRA_WRITE_BACK}
    if write_back:
        settings.backup(datetime.now().strftime(TIMESTAMP_FORMAT))
        settings.update(write_back)
        info(f"Stored generated {', '.join(write_back)} in {settings.path.name}")
        warn("Restart the affected services so they pick up the new credentials")

    marker = stack_dir / GENERATED_PASSWORDS_MARKER
    if not marker.exists():
        recorded = dict(write_back)
        recorded.update({k: context[k] for k in PERSISTENT_SECRETS})
        _write_generated_marker(stack_dir, recorded)
        success(f"Generated values recorded in {GENERATED_PASSWORDS_MARKER} (mode 600)")

    return env_path
