#!/usr/bin/env python3
"""
Filename and marker constants for infractl.

Values that operators are expected to change per stack live in
defaults.toml instead; this module only holds names the tool itself relies on.
"""

# ============================================================================
# Stack files
# ============================================================================

# Per-stack override of the packaged defaults.toml
STACK_CONFIG_OVERRIDES = 'infractl.toml'

# Packaged resources
PACKAGED_DEFAULTS = 'defaults.toml'
PACKAGED_ENGINE_TEMPLATE = 'engine.env.template'

# Settings files
SETTINGS_FILE = '.env'
SETTINGS_TEMPLATE = '.env.example'

# Docker Compose
DOCKER_COMPOSE_FILE = 'docker-compose.yml'

# Written once by engine-env after first-run credentials are produced
GENERATED_PASSWORDS_MARKER = '.passwords.generated'

# ============================================================================
# Backups and records
# ============================================================================

TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'
BACKUP_SUFFIX = '.backup.'
PASSWORD_RECORD_PATTERN = '.passwords.{stamp}.txt'

# Owner read/write only
SECRET_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644


def backup_name(filename: str, stamp: str) -> str:
    """
    Get the backup filename for a file and timestamp.

    Examples:
        >>> backup_name('.env', '20240101_120000')
        '.env.backup.20240101_120000'
    """
    return f"{filename}{BACKUP_SUFFIX}{stamp}"
